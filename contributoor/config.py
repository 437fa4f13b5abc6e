"""Contributoor configuration: defaults, loading from YAML and address helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from enum import IntEnum
from typing import Any, Callable
from urllib.parse import urlsplit

import yaml

DEFAULT_METRICS_HOST = "127.0.0.1"
DEFAULT_METRICS_PORT = "9090"
DEFAULT_PPROF_HOST = "127.0.0.1"
DEFAULT_PPROF_PORT = "6060"
DEFAULT_HEALTH_CHECK_HOST = "127.0.0.1"
DEFAULT_HEALTH_CHECK_PORT = "9191"

DEFAULT_OUTPUT_SERVER_ADDRESS = "xatu.primary.production.platform.ethpandaops.io:443"

_SYSTEMD_ENV_VARS = ("INVOCATION_ID", "JOURNAL_STREAM", "NOTIFY_SOCKET")

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


class ConfigValidationError(ValueError):
    """Raised when a configuration field holds an unacceptable value."""

    def __init__(
        self,
        field: str,
        reason: str,
        cause: BaseException | None = None,
        key: bool = False,
    ) -> None:
        self.field = field
        self.reason = reason
        self.cause = cause
        self.key = key
        super().__init__(str(self))

    def __str__(self) -> str:
        cause = f" | caused by: {self.cause}" if self.cause is not None else ""
        key = "key for " if self.key else ""
        return f"invalid {key}Config.{self.field}: {self.reason}{cause}"


class NetworkName(IntEnum):
    """Well-known Ethereum networks."""

    UNSPECIFIED = 0
    MAINNET = 1
    SEPOLIA = 2
    HOLESKY = 3
    HOODI = 4

    def display_name(self) -> str:
        """Return the human-readable name of the network."""
        return _NETWORK_DISPLAY_NAMES.get(self, "Unknown")


_NETWORK_DISPLAY_NAMES = {
    NetworkName.MAINNET: "Mainnet",
    NetworkName.SEPOLIA: "Sepolia",
    NetworkName.HOLESKY: "Holesky",
    NetworkName.HOODI: "Hoodi",
}


class RunMethod(IntEnum):
    """How contributoor is being run."""

    UNSPECIFIED = 0
    DOCKER = 1
    SYSTEMD = 2
    BINARY = 3

    def display_name(self) -> str:
        """Return the human-readable name of the run method."""
        return _RUN_METHOD_DISPLAY_NAMES.get(self, "Unknown")

    @property
    def proto_name(self) -> str:
        """Return the name used for this value in configuration files."""
        return f"RUN_METHOD_{self.name}"


_RUN_METHOD_DISPLAY_NAMES = {
    RunMethod.DOCKER: "Docker",
    RunMethod.SYSTEMD: "Systemd",
    RunMethod.BINARY: "Binary",
}


@dataclass
class OutputServer:
    """Where decorated events are sent."""

    address: str = ""
    credentials: str = ""
    tls: bool = False


@dataclass
class AttestationSubnetCheck:
    """Attestation subnet filtering settings as found in the config file."""

    enabled: bool = False
    max_subnets: int = 0
    mismatch_detection_window: int = 0
    mismatch_threshold: int = 0
    mismatch_cooldown_seconds: int = 0
    subnet_high_water_mark: int = 0


@dataclass
class Config:
    """Top-level contributoor configuration."""

    log_level: str = ""
    version: str = ""
    contributoor_directory: str = ""
    run_method: RunMethod = RunMethod.UNSPECIFIED
    network_name: str = ""
    beacon_node_address: str = ""
    metrics_address: str = ""
    pprof_address: str = ""
    output_server: OutputServer | None = None
    docker_network: str = ""
    health_check_address: str = ""
    attestation_subnet_check: AttestationSubnetCheck | None = None

    def validate(self) -> None:
        """Raise ConfigValidationError if the configuration is unusable."""
        if not self.beacon_node_address:
            raise ConfigValidationError("beaconNodeAddress", "value is required")

    def get_metrics_host_port(self) -> tuple[str, str]:
        """Return the metrics host and port, or empty strings when unset."""
        if not self.metrics_address:
            return "", ""
        return parse_address(self.metrics_address, DEFAULT_METRICS_HOST, DEFAULT_METRICS_PORT)

    def get_pprof_host_port(self) -> tuple[str, str]:
        """Return the pprof host and port, or empty strings when unset."""
        if not self.pprof_address:
            return "", ""
        return parse_address(self.pprof_address, DEFAULT_PPROF_HOST, DEFAULT_PPROF_PORT)

    def get_health_check_host_port(self) -> tuple[str, str]:
        """Return the health check host and port, or empty strings when unset."""
        if not self.health_check_address:
            return "", ""
        return parse_address(
            self.health_check_address, DEFAULT_HEALTH_CHECK_HOST, DEFAULT_HEALTH_CHECK_PORT
        )

    def set_network(self, network: str) -> None:
        """Set the network name; an empty name is an error."""
        if not network:
            raise ValueError("network is required")
        self.network_name = network

    def set_beacon_node_address(self, address: str) -> None:
        """Set the beacon node address unless it is empty."""
        if address:
            self.beacon_node_address = address

    def set_metrics_address(self, address: str) -> None:
        """Set the metrics address unless it is empty."""
        if address:
            self.metrics_address = address

    def set_health_check_address(self, address: str) -> None:
        """Set the health check address unless it is empty."""
        if address:
            self.health_check_address = address

    def set_log_level(self, level: str) -> None:
        """Set the log level unless it is empty."""
        if level:
            self.log_level = level

    def _ensure_output_server(self) -> OutputServer:
        if self.output_server is None:
            self.output_server = OutputServer()
        return self.output_server

    def set_output_server_address(self, address: str) -> None:
        """Set the output server address unless it is empty."""
        if address:
            self._ensure_output_server().address = address

    def set_output_server_credentials(self, creds: str) -> None:
        """Set the output server credentials unless they are empty."""
        if creds:
            self._ensure_output_server().credentials = creds

    def set_output_server_tls(self, use_tls: bool) -> None:
        """Set whether the output server is reached over TLS."""
        self._ensure_output_server().tls = use_tls

    def set_contributoor_directory(self, directory: str) -> None:
        """Set the contributoor directory unless it is empty."""
        if directory:
            self.contributoor_directory = directory

    def is_run_method_systemd(self) -> bool:
        """Return whether contributoor runs under systemd."""
        if self.run_method == RunMethod.SYSTEMD:
            return True
        return any(os.environ.get(name) for name in _SYSTEMD_ENV_VARS)


def _split_host_port(hostport: str) -> tuple[str, str]:
    """Split "host:port" or "[host]:port"; raise ValueError if malformed."""
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise ValueError("missing ']' in address")
        rest = hostport[end + 1 :]
        if not rest.startswith(":"):
            raise ValueError("missing port in address")
        host, port = hostport[1:end], rest[1:]
        if "[" in host or "]" in host or "[" in port or "]" in port:
            raise ValueError("unexpected bracket in address")
        return host, port

    host, sep, port = hostport.rpartition(":")
    if not sep:
        raise ValueError("missing port in address")
    if ":" in host:
        raise ValueError("too many colons in address")
    if "[" in hostport or "]" in hostport:
        raise ValueError("unexpected bracket in address")
    return host, port


def parse_address(address: str, default_host: str, default_port: str) -> tuple[str, str]:
    """Split an address into host and port, falling back to the defaults.

    Accepts "host:port", ":port" and URLs such as "http://host:port".
    """
    if not address:
        return default_host, default_port

    if address.startswith(":"):
        return default_host, address[1:]

    try:
        netloc = urlsplit(address).netloc
    except ValueError:
        netloc = ""
    host_part = netloc.rpartition("@")[2]
    if host_part:
        try:
            return _split_host_port(host_part)
        except ValueError:
            pass

    try:
        return _split_host_port(address)
    except ValueError:
        return default_host, default_port


def new_default_config() -> Config:
    """Return a configuration holding the default values."""
    return Config(
        log_level="info",
        version="",
        contributoor_directory="~/.contributoor",
        run_method=RunMethod.DOCKER,
        network_name="",
        beacon_node_address="http://localhost:5052",
        metrics_address="",
        pprof_address="",
        output_server=OutputServer(
            address=DEFAULT_OUTPUT_SERVER_ADDRESS,
            credentials="",
            tls=True,
        ),
    )


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _parse_str(value: Any, path: str) -> str:
    if not isinstance(value, str):
        raise ConfigValidationError(path, "must be a string")
    return value


def _parse_bool(value: Any, path: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigValidationError(path, "must be a boolean")
    return value


def _parse_int(value: Any, path: str) -> int:
    if isinstance(value, bool):
        raise ConfigValidationError(path, "must be an integer")
    if isinstance(value, int):
        number = value
    elif isinstance(value, float) and value.is_integer():
        number = int(value)
    elif isinstance(value, str):
        try:
            number = int(value.strip())
        except ValueError as exc:
            raise ConfigValidationError(path, "must be an integer", exc) from exc
    else:
        raise ConfigValidationError(path, "must be an integer")
    if not _INT32_MIN <= number <= _INT32_MAX:
        raise ConfigValidationError(path, "integer out of range")
    return number


def _parse_run_method(value: Any, path: str) -> RunMethod:
    if isinstance(value, str):
        for member in RunMethod:
            if member.proto_name == value:
                return member
        raise ConfigValidationError(path, f"unknown run method {value!r}")
    if isinstance(value, int) and not isinstance(value, bool):
        try:
            return RunMethod(value)
        except ValueError as exc:
            raise ConfigValidationError(path, f"unknown run method {value}", exc) from exc
    raise ConfigValidationError(path, "must be a run method name or number")


_Parser = Callable[[Any, str], Any]


def _message_parser(cls: type, kinds: dict[str, _Parser]) -> _Parser:
    names = {}
    for f in fields(cls):
        names[f.name] = f.name
        names[_camel(f.name)] = f.name

    def parse(raw: Any, path: str) -> Any:
        if not isinstance(raw, dict):
            raise ConfigValidationError(path or cls.__name__, "must be an object")
        values: dict[str, Any] = {}
        for key, value in raw.items():
            key_path = f"{path}.{key}" if path else str(key)
            attr = names.get(key) if isinstance(key, str) else None
            if attr is None:
                raise ConfigValidationError(key_path, "unknown field", key=True)
            if attr in values:
                raise ConfigValidationError(key_path, "duplicate field", key=True)
            if value is None:
                continue
            values[attr] = kinds[attr](value, key_path)
        return cls(**values)

    return parse


_parse_output_server = _message_parser(
    OutputServer,
    {"address": _parse_str, "credentials": _parse_str, "tls": _parse_bool},
)

_parse_attestation_subnet_check = _message_parser(
    AttestationSubnetCheck,
    {
        "enabled": _parse_bool,
        "max_subnets": _parse_int,
        "mismatch_detection_window": _parse_int,
        "mismatch_threshold": _parse_int,
        "mismatch_cooldown_seconds": _parse_int,
        "subnet_high_water_mark": _parse_int,
    },
)

_parse_config = _message_parser(
    Config,
    {
        "log_level": _parse_str,
        "version": _parse_str,
        "contributoor_directory": _parse_str,
        "run_method": _parse_run_method,
        "network_name": _parse_str,
        "beacon_node_address": _parse_str,
        "metrics_address": _parse_str,
        "pprof_address": _parse_str,
        "output_server": _parse_output_server,
        "docker_network": _parse_str,
        "health_check_address": _parse_str,
        "attestation_subnet_check": _parse_attestation_subnet_check,
    },
)


def config_from_mapping(raw: Any) -> Config:
    """Build and validate a Config from a decoded document."""
    if not isinstance(raw, dict):
        raise ConfigValidationError("", "document must be a mapping")
    cfg = _parse_config(raw, "")
    cfg.validate()
    return cfg


def new_config_from_path(path: str | os.PathLike[str]) -> Config:
    """Load a configuration from a YAML file and validate it.

    Raises OSError if the file cannot be read, yaml.YAMLError if it is not
    YAML, and ConfigValidationError if its contents are not acceptable.
    """
    with open(path, encoding="utf-8") as handle:
        raw = yaml.safe_load(handle)
    return config_from_mapping(raw)