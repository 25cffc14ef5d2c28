"""
Error taxonomy for the hardware manager.

- NotFoundError: a referenced object (nodelist, NodePool, node record) is absent
- ParseError: the inventory catalog is malformed
- DecodeError: BMC credentials in the inventory are not valid base64
- InsufficientResourcesError: not enough free nodes for a hardware profile
- ConflictError: optimistic-concurrency clash when writing the inventory

Messages are safe to surface in NodePool status conditions.
"""

from __future__ import annotations


class HardwareManagerError(Exception):
    """Base class for expected hardware manager errors."""


class NotFoundError(HardwareManagerError):
    """Referenced object does not exist."""


class ParseError(HardwareManagerError):
    """Persisted inventory data could not be parsed."""


class DecodeError(HardwareManagerError):
    """Encoded credential material could not be decoded."""


class ConflictError(HardwareManagerError):
    """Versioned update lost a race with another writer."""


class InsufficientResourcesError(HardwareManagerError):
    """Not enough free nodes with the requested hardware profile."""

    def __init__(self, profile: str, requested: int, available: int) -> None:
        self.profile = profile
        self.requested = requested
        self.available = available
        super().__init__(
            f"not enough free resources in hardware profile {profile}: "
            f"requested={requested}, available={available}"
        )
