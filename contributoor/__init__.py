"""Beacon node topic selection, node identity, attestation subnet tracking and configuration."""

__version__ = "0.1.0"