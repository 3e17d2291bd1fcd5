"""
Derived aggregate products.

None of these are persisted; they are recomputed per query from the
anonymized store. Only the count/frequency fields are noised at disclosure.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class ODMatrixEntry:
    """Trips between one (origin, destination) pair, optionally within one time bucket."""
    origin_zone: str
    destination_zone: str
    trip_count: int
    total_distance: float
    avg_duration: float
    mode_distribution: Dict[str, int] = field(default_factory=dict)
    time_distribution: Dict[str, int] = field(default_factory=dict)
    time_bucket: Optional[str] = None

    @property
    def pair(self) -> Tuple[str, str]:
        return (self.origin_zone, self.destination_zone)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HeatmapEntry:
    """Trips starting in one zone."""
    zone: str
    latitude: float
    longitude: float
    trip_count: int
    avg_duration: float
    mode_distribution: Dict[str, int] = field(default_factory=dict)
    time_buckets: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TripChainPattern:
    """
    A sequence of zone hops shared by at least k chain instances.

    avg_duration / avg_distance are the mean per-chain totals over the
    chains that produced this pattern.
    """
    pattern: str
    hops: List[str]
    frequency: int
    avg_duration: float
    avg_distance: float
    modes: List[str] = field(default_factory=list)
    purposes: List[str] = field(default_factory=list)

    @property
    def chain_length(self) -> int:
        return len(self.hops)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d['chain_length'] = self.chain_length
        return d


@dataclass
class ZoneTransitionMatrix:
    """Adjacent hop-to-hop transitions across disclosed chain patterns."""
    hops: List[str]
    transitions: Dict[str, Dict[str, int]]
    total_transitions: int

    def count(self, from_hop: str, to_hop: str) -> int:
        return self.transitions.get(from_hop, {}).get(to_hop, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zones": list(self.hops),
            "transition_matrix": {k: dict(v) for k, v in self.transitions.items()},
            "metadata": {
                "total_transitions": self.total_transitions,
                "unique_zones": len(self.hops),
            },
        }


@dataclass
class ModeShareEntry:
    """Trip count and share for one travel mode."""
    mode: str
    count: int
    percentage: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
