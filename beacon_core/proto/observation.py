"""
Observation Message Schema.

Defines the anchor description and the per-detection RSSI sample that is
forwarded to the remote collector.

Wire format (one request per Observation):
    {"deviceId": str, "anchorName": str, "rssi": int,
     "macAddress": str, "timestamp": int (ms since epoch)}
"""

import json
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple
from enum import IntEnum


# Expected RSSI range for indoor anchors (dBm)
RSSI_MIN_DBM = -100
RSSI_MAX_DBM = -30


class RssiConfidence(IntEnum):
    """Confidence indicator for an RSSI sample."""

    NORMAL = 0  # Within expected indoor range
    LOW = 1     # Outside [-100, -30] dBm, accepted but suspicious


@dataclass(frozen=True)
class AnchorInfo:
    """
    Fixed beacon of a deployment.

    Attributes:
        name: Anchor name, unique within a deployment (e.g., "Anchor1")
        address: Hardware (MAC-style) address, normalised to upper case
        position: Optional 2D position (x, y) in meters, carried for
            trilateration downstream
    """

    name: str
    address: str
    position: Optional[Tuple[float, float]] = None

    def __post_init__(self):
        """Validate and normalise anchor fields."""
        if not self.name or not self.name.strip():
            raise ValueError("Anchor name cannot be empty")
        if not self.address or not self.address.strip():
            raise ValueError(f"Anchor {self.name} has no address")

        object.__setattr__(self, 'address', self.address.strip().upper())
        if self.position is not None:
            if len(self.position) != 2:
                raise ValueError(f"Anchor position must be 2D: {self.position}")
            object.__setattr__(
                self, 'position', (float(self.position[0]), float(self.position[1]))
            )

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'address': self.address,
            'position': {'x': self.position[0], 'y': self.position[1]}
            if self.position else None,
        }


class AnchorRegistry:
    """
    Read-only lookup of the anchors registered for a deployment.

    Anchors are registered at configuration time and never mutated.
    """

    def __init__(self, anchors: Iterable[AnchorInfo] = ()):
        self._by_name: Dict[str, AnchorInfo] = {}
        self._by_address: Dict[str, AnchorInfo] = {}

        for anchor in anchors:
            if anchor.name in self._by_name:
                raise ValueError(f"Duplicate anchor name: {anchor.name}")
            if anchor.address in self._by_address:
                raise ValueError(f"Duplicate anchor address: {anchor.address}")
            self._by_name[anchor.name] = anchor
            self._by_address[anchor.address] = anchor

    def get_by_address(self, address: Optional[str]) -> Optional[AnchorInfo]:
        """Find the anchor registered for a hardware address (case-insensitive)."""
        if not address:
            return None
        return self._by_address.get(address.strip().upper())

    def get_by_name(self, name: str) -> Optional[AnchorInfo]:
        return self._by_name.get(name)

    def is_anchor_address(self, address: Optional[str]) -> bool:
        return self.get_by_address(address) is not None

    @property
    def names(self) -> list:
        return sorted(self._by_name)

    @property
    def anchors(self) -> list:
        return [self._by_name[name] for name in self.names]

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: str) -> bool:
        return name in self._by_name


def create_anchor_registry(anchor_config: Dict[str, Dict]) -> AnchorRegistry:
    """
    Build an AnchorRegistry from the ANCHOR_CONFIG dictionary format.

    Args:
        anchor_config: Mapping name -> {"address": str, "x": float, "y": float}

    Returns:
        AnchorRegistry with one AnchorInfo per entry
    """
    anchors = []
    for name, entry in anchor_config.items():
        position = None
        if 'x' in entry and 'y' in entry:
            position = (entry['x'], entry['y'])
        anchors.append(AnchorInfo(name=name, address=entry['address'], position=position))
    return AnchorRegistry(anchors)


@dataclass(frozen=True)
class Observation:
    """
    One RSSI sample of one anchor, captured inside an open scan window.

    Attributes:
        device_id: Scanning (mobile) device identifier, constant per session
        anchor_name: Resolved anchor name, or raw address if unresolved
        rssi: Received signal strength (dBm)
        mac_address: Hardware address of the detected beacon
        timestamp_ms: Capture time, milliseconds since epoch

    Notes:
        - Immutable; handed from stage to stage by value
        - RSSI outside [-100, -30] dBm is accepted but flagged LOW confidence
    """

    device_id: str
    anchor_name: str
    rssi: int
    mac_address: str
    timestamp_ms: int

    def __post_init__(self):
        """Validate observation after initialization."""
        if not self.device_id:
            raise ValueError("device_id cannot be empty")
        if not self.anchor_name:
            raise ValueError("anchor_name cannot be empty")
        if not self.mac_address:
            raise ValueError("mac_address cannot be empty")
        if isinstance(self.rssi, bool) or not isinstance(self.rssi, int):
            raise ValueError(f"RSSI must be an integer: {self.rssi!r}")
        if isinstance(self.timestamp_ms, bool) or not isinstance(self.timestamp_ms, int):
            raise ValueError(f"timestamp_ms must be an integer: {self.timestamp_ms!r}")
        if self.timestamp_ms < 0:
            raise ValueError(f"timestamp_ms cannot be negative: {self.timestamp_ms}")

    @property
    def confidence(self) -> RssiConfidence:
        if RSSI_MIN_DBM <= self.rssi <= RSSI_MAX_DBM:
            return RssiConfidence.NORMAL
        return RssiConfidence.LOW

    @property
    def is_low_confidence(self) -> bool:
        return self.confidence == RssiConfidence.LOW

    @property
    def dedup_key(self) -> Tuple[str, str, int]:
        """Key the collector deduplicates on: (deviceId, anchorName, timestamp)."""
        return (self.device_id, self.anchor_name, self.timestamp_ms)

    def to_request(self) -> dict:
        """
        Serialize to the collector request record.

        Returns:
            Dict with the wire field names
        """
        return {
            'deviceId': self.device_id,
            'anchorName': self.anchor_name,
            'rssi': self.rssi,
            'macAddress': self.mac_address,
            'timestamp': self.timestamp_ms,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_request())

    @classmethod
    def from_request(cls, record: dict) -> 'Observation':
        """Rebuild an Observation from a wire record."""
        return cls(
            device_id=record['deviceId'],
            anchor_name=record['anchorName'],
            rssi=record['rssi'],
            mac_address=record['macAddress'],
            timestamp_ms=record['timestamp'],
        )

    def format_display(self) -> str:
        """One-line human-readable form."""
        flag = " (low confidence)" if self.is_low_confidence else ""
        return f"{self.anchor_name}, RSSI: {self.rssi} dBm{flag}, {self.mac_address}"
