"""Configuration for the connection to an Ethereum beacon node."""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_MAX_SUBNETS = 2
DEFAULT_MISMATCH_DETECTION_WINDOW = 2
DEFAULT_MISMATCH_THRESHOLD = 1
DEFAULT_MISMATCH_COOLDOWN_SECONDS = 300
SUBNET_HIGH_WATER_MARK = 5

MAX_ATTESTATION_SUBNETS = 64


class EthereumConfigError(ValueError):
    """Raised when the beacon node configuration is invalid."""


@dataclass
class SubnetConfig:
    """Attestation subnet filtering and mismatch detection settings."""

    enabled: bool = False
    max_subnets: int = DEFAULT_MAX_SUBNETS
    mismatch_detection_window: int = DEFAULT_MISMATCH_DETECTION_WINDOW
    mismatch_threshold: int = DEFAULT_MISMATCH_THRESHOLD
    mismatch_cooldown_seconds: int = DEFAULT_MISMATCH_COOLDOWN_SECONDS
    subnet_high_water_mark: int = SUBNET_HIGH_WATER_MARK


@dataclass
class EthereumConfig:
    """Where the beacon node is and how to talk to it."""

    beacon_node_address: str = ""
    beacon_node_headers: dict[str, str] = field(default_factory=dict)
    network_override: str = ""
    attestation_subnet: SubnetConfig = field(default_factory=SubnetConfig)

    def validate(self) -> None:
        """Raise EthereumConfigError if the configuration is unusable."""
        if not self.beacon_node_address:
            raise EthereumConfigError("beaconNodeAddress is required")

        subnet = self.attestation_subnet
        if subnet.enabled and not 0 <= subnet.max_subnets <= MAX_ATTESTATION_SUBNETS:
            raise EthereumConfigError(
                "attestationSubnet.maxSubnets must be between 0 and 64 (inclusive)"
            )


def new_default_config() -> EthereumConfig:
    """Return a configuration holding the default values."""
    return EthereumConfig()