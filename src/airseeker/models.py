#!/usr/bin/env python3
"""Data models for Airseeker.

This module provides immutable data classes for the signed data served by
gateways, the data feed values stored on chain and the per-beacon values that
are aggregated into beacon set updates.
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class SignedData:
    """A beacon reading attested by its airnode.

    Attributes:
        timestamp: Unix timestamp of the reading (decimal string as served)
        encoded_value: ABI encoded int256 value (0x prefixed hex)
        signature: Airnode signature over (templateId, timestamp, encodedValue)
    """

    timestamp: str
    encoded_value: str
    signature: str

    def __str__(self) -> str:
        """Human-readable string representation."""
        return (
            f"SignedData(timestamp={self.timestamp}, "
            f"value={self.encoded_value[:10]}..., "
            f"signature={self.signature[:10]}...)"
        )


@dataclass(frozen=True, slots=True)
class DataFeedValue:
    """Value and timestamp of a data feed as read from the DapiServer contract."""

    value: int
    timestamp: int

    @property
    def is_initialized(self) -> bool:
        return self.timestamp > 0


@dataclass(frozen=True, slots=True)
class BeaconValue:
    """A beacon value ready to be used in an update transaction.

    Values read from chain (instead of the gateway cache) carry empty
    ``encoded_value`` and ``signature``, which tells the contract to reuse the
    stored beacon value.

    Attributes:
        beacon_id: Beacon ID
        airnode: Airnode address of the beacon
        template_id: Template ID of the beacon
        timestamp: Unix timestamp of the value
        encoded_value: ABI encoded value, "0x" when read from chain
        signature: Airnode signature, "0x" when read from chain
        value: Decoded integer value
    """

    beacon_id: str
    airnode: str
    template_id: str
    timestamp: int
    encoded_value: str
    signature: str
    value: int

    @property
    def from_chain(self) -> bool:
        return self.signature in ("", "0x")
