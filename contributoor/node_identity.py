"""Fetching the identity of a beacon node and decoding its attestation subnets."""

from __future__ import annotations

import binascii
import json
import logging
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any

log = logging.getLogger(__name__)

IDENTITY_PATH = "/eth/v1/node/identity"
DEFAULT_TIMEOUT = 30.0
MAX_ATTNET_BYTES = 8


class NodeIdentityError(Exception):
    """Raised when the node identity cannot be fetched or understood."""


@dataclass
class NodeIdentityMetadata:
    """The metadata part of a node identity."""

    seq_number: str = ""
    attnets: str = ""
    syncnets: str = ""
    custody_group_count: str = ""

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> NodeIdentityMetadata:
        return cls(
            seq_number=_string_field(raw, "seq_number"),
            attnets=_string_field(raw, "attnets"),
            syncnets=_string_field(raw, "syncnets"),
            custody_group_count=_string_field(raw, "custody_group_count"),
        )


@dataclass
class NodeIdentityData:
    """A beacon node identity as returned by the beacon API."""

    peer_id: str = ""
    enr: str = ""
    p2p_addresses: list[str] = field(default_factory=list)
    discovery_addresses: list[str] = field(default_factory=list)
    metadata: NodeIdentityMetadata = field(default_factory=NodeIdentityMetadata)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> NodeIdentityData:
        metadata = raw.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValueError("metadata must be an object")
        return cls(
            peer_id=_string_field(raw, "peer_id"),
            enr=_string_field(raw, "enr"),
            p2p_addresses=_string_list_field(raw, "p2p_addresses"),
            discovery_addresses=_string_list_field(raw, "discovery_addresses"),
            metadata=NodeIdentityMetadata.from_dict(metadata),
        )


def _string_field(raw: dict[str, Any], key: str) -> str:
    value = raw.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


def _string_list_field(raw: dict[str, Any], key: str) -> list[str]:
    value = raw.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{key} must be a list of strings")
    return list(value)


class NodeIdentity:
    """Holds the identity of a beacon node, fetched on start."""

    timeout: float = DEFAULT_TIMEOUT

    def __init__(self, address: str, headers: dict[str, str] | None = None) -> None:
        self._address = address
        self._headers = dict(headers or {})
        self._lock = threading.Lock()
        self._identity: NodeIdentityData | None = None

    def start(self) -> None:
        """Fetch the node identity and keep it."""
        try:
            identity = self._fetch_identity()
        except NodeIdentityError as exc:
            raise NodeIdentityError(f"failed to fetch node identity: {exc}") from exc

        with self._lock:
            self._identity = identity

        log.info(
            "Node identity fetched successfully",
            extra={
                "peer_id": identity.peer_id,
                "attnets": self.attnets(),
                "attnets_hex": identity.metadata.attnets,
            },
        )

    def stop(self) -> None:
        """Release resources; nothing is held between calls."""

    def attnets(self) -> list[int]:
        """Return the attestation subnet IDs the node advertises."""
        with self._lock:
            identity = self._identity
        if identity is None:
            return []
        try:
            return parse_attnets_bitmask(identity.metadata.attnets)
        except ValueError as exc:
            log.warning("Failed to parse attnets bitmask: %s", exc)
            return []

    def _fetch_identity(self) -> NodeIdentityData:
        url = f"{self._address}{IDENTITY_PATH}"
        request = urllib.request.Request(url, headers=self._headers, method="GET")

        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                status = response.status
                body = response.read()
        except urllib.error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise NodeIdentityError(
                f"unexpected status code {exc.code}: {detail}"
            ) from exc
        except (urllib.error.URLError, OSError) as exc:
            raise NodeIdentityError(f"failed to fetch identity: {exc}") from exc

        if status != 200:
            detail = body.decode("utf-8", errors="replace")
            raise NodeIdentityError(f"unexpected status code {status}: {detail}")

        try:
            payload = json.loads(body)
            if not isinstance(payload, dict):
                raise ValueError("response must be an object")
            data = payload.get("data") or {}
            if not isinstance(data, dict):
                raise ValueError("data must be an object")
            identity = NodeIdentityData.from_dict(data)
        except ValueError as exc:
            raise NodeIdentityError(f"failed to decode response: {exc}") from exc

        if not identity.peer_id:
            raise NodeIdentityError("empty peer ID in response")

        return identity


def parse_attnets_bitmask(attnets: str) -> list[int]:
    """Decode an attnets hex bitfield into subnet IDs.

    Bits are read LSB-first: bit 0 of byte 0 is subnet 0, bit 7 of byte 0 is
    subnet 7, bit 0 of byte 1 is subnet 8. Only the first 8 bytes count.
    """
    if attnets.startswith("0x"):
        attnets = attnets[2:]

    try:
        raw = binascii.unhexlify(attnets)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"failed to decode attnets hex: {exc}") from exc

    return [
        byte_index * 8 + bit
        for byte_index, value in enumerate(raw[:MAX_ATTNET_BYTES])
        for bit in range(8)
        if value & (1 << bit)
    ]