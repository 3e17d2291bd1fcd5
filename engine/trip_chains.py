"""
Trip-Chain Pattern Miner.

CHAIN SEGMENTATION (single canonical rule):
    A user's records, ordered by (trip_date, start_time_bucket), are split
    into a new chain whenever the gap between consecutive bucketed start
    datetimes is strictly greater than gap_minutes. A gap exactly equal to
    the window stays in the same chain. Only chains of at least two trips
    produce a pattern; longer chains are truncated to max_pattern_length.

PATTERN:
    Each trip contributes one hop "<origin>-><destination>"; hops are joined
    with "|", e.g. "A->B|B->C". Frequency is the number of chain instances
    (across all users and days) producing the identical string.

DISCLOSURE:
    A pattern is released only when its frequency reaches the chain
    k-anonymity threshold (and the caller's min_frequency, whichever is
    larger). avg_duration / avg_distance are the mean per-chain totals of
    the real trip durations and distances composing the matching chains.
"""

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Set

from core.bucketing import bucket_datetime
from core.config import Config
from core.suppression import KAnonymityGate
from engine.od_matrix import resolve_filters
from schema.aggregates import TripChainPattern, ZoneTransitionMatrix
from schema.filters import QueryFilters
from store.anonymized_store import AnonymizedStore


logger = logging.getLogger(__name__)

HOP_SEPARATOR = "->"
PATTERN_SEPARATOR = "|"
ORDER_COLUMNS = ['pseudonymized_user_id', 'trip_date', 'start_time_bucket', 'end_time_bucket']


def segment_chains(start_times: Sequence[datetime], gap_minutes: int) -> List[List[int]]:
    """
    Split time-ordered start times into chains.

    Args:
        start_times: One user's start datetimes, ascending
        gap_minutes: Maximum gap between consecutive starts within a chain

    Returns:
        Lists of indices into start_times, one per chain (singletons included)
    """
    window = timedelta(minutes=gap_minutes)
    chains: List[List[int]] = []
    for i, start in enumerate(start_times):
        if chains and start - start_times[i - 1] <= window:
            chains[-1].append(i)
        else:
            chains.append([i])
    return chains


def hop(origin_zone: str, destination_zone: str) -> str:
    return f"{origin_zone}{HOP_SEPARATOR}{destination_zone}"


@dataclass
class _PatternStats:
    hops: List[str]
    frequency: int = 0
    duration_total: float = 0.0
    distance_total: float = 0.0
    modes: Set[str] = field(default_factory=set)
    purposes: Set[str] = field(default_factory=set)


class TripChainMiner:
    """Mines multi-trip chain patterns from the anonymized store."""

    def __init__(self, store: AnonymizedStore, config: Optional[Config] = None):
        self.store = store
        self.config = config or Config()

    def build(
        self,
        start_date: date,
        end_date: date,
        min_frequency: Optional[int] = None,
        max_pattern_length: Optional[int] = None,
        filters: Optional[QueryFilters] = None
    ) -> List[TripChainPattern]:
        """
        Mine disclosed chain patterns for a date range.

        Args:
            start_date: First trip date (inclusive)
            end_date: Last trip date (inclusive)
            min_frequency: Minimum chain instances; never below the chain k threshold
            max_pattern_length: Hops kept per chain (1-10)
            filters: Optional zones / travel_modes / time_bins restriction

        Returns:
            Patterns sorted by frequency descending, then pattern, cut to top_n
        """
        chains_config = self.config.chains
        min_frequency = min_frequency if min_frequency is not None else chains_config.min_frequency
        max_length = max_pattern_length if max_pattern_length is not None else chains_config.max_pattern_length
        if not 1 <= max_length <= 10:
            raise ValueError(f"max_pattern_length must be between 1 and 10, got {max_length}")
        if min_frequency < 1:
            raise ValueError(f"min_frequency must be positive, got {min_frequency}")

        resolved = resolve_filters(start_date, end_date, filters)
        rows = self.store.query(resolved)
        stats = self._collect(rows, max_length)

        threshold = max(self.config.privacy.chain_k_threshold, min_frequency)
        gate = KAnonymityGate(threshold, label="chain pattern")
        kept = gate.filter_counts({pattern: s.frequency for pattern, s in stats.items()})

        patterns = [
            TripChainPattern(
                pattern=pattern,
                hops=list(stats[pattern].hops),
                frequency=frequency,
                avg_duration=stats[pattern].duration_total / frequency,
                avg_distance=stats[pattern].distance_total / frequency,
                modes=sorted(stats[pattern].modes),
                purposes=sorted(stats[pattern].purposes),
            )
            for pattern, frequency in kept.items()
        ]
        patterns.sort(key=lambda p: (-p.frequency, p.pattern))
        patterns = patterns[:chains_config.top_n]

        logger.info(
            f"Trip chains: {len(stats):,} candidate patterns, {len(patterns):,} disclosed (k={threshold})"
        )
        return patterns

    def _collect(self, rows, max_length: int) -> Dict[str, _PatternStats]:
        """Segment every user's records and accumulate per-pattern totals."""
        stats: Dict[str, _PatternStats] = {}
        if len(rows) == 0:
            return stats

        ordered = rows.sort_values(ORDER_COLUMNS, kind='mergesort')
        gap = self.config.chains.gap_minutes
        chain_count = 0

        for _, user_rows in ordered.groupby('pseudonymized_user_id', sort=False):
            records = user_rows.to_dict('records')
            starts = [bucket_datetime(r['trip_date'], r['start_time_bucket']) for r in records]

            for indices in segment_chains(starts, gap):
                if len(indices) < 2:
                    continue
                chain = [records[i] for i in indices[:max_length]]
                hops = [hop(r['origin_zone'], r['destination_zone']) for r in chain]
                pattern = PATTERN_SEPARATOR.join(hops)

                entry = stats.setdefault(pattern, _PatternStats(hops=hops))
                entry.frequency += 1
                entry.duration_total += sum(float(r['duration_seconds']) for r in chain)
                entry.distance_total += sum(float(r['distance_meters']) for r in chain)
                entry.modes.update(r['travel_mode'] for r in chain)
                entry.purposes.update(r['trip_purpose'] for r in chain)
                chain_count += 1

        logger.debug(f"Segmented {chain_count:,} multi-trip chains")
        return stats

    @staticmethod
    def transition_matrix(patterns: List[TripChainPattern]) -> ZoneTransitionMatrix:
        """Adjacent hop-to-hop transitions across patterns, weighted by frequency."""
        transitions: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        hops: Set[str] = set()
        total = 0

        for pattern in patterns:
            hops.update(pattern.hops)
            for current, following in zip(pattern.hops, pattern.hops[1:]):
                transitions[current][following] += pattern.frequency
                total += pattern.frequency

        return ZoneTransitionMatrix(
            hops=sorted(hops),
            transitions={k: dict(v) for k, v in sorted(transitions.items())},
            total_transitions=total,
        )

    @staticmethod
    def summarize(patterns: List[TripChainPattern], top_sequences: int = 10) -> Dict[str, Any]:
        lengths = [p.chain_length for p in patterns]
        length_distribution: Counter = Counter()
        sequences: Counter = Counter()
        for pattern in patterns:
            length_distribution[pattern.chain_length] += pattern.frequency
            for current, following in zip(pattern.hops, pattern.hops[1:]):
                sequences[f"{current}{PATTERN_SEPARATOR}{following}"] += pattern.frequency

        common = sorted(sequences.items(), key=lambda item: (-item[1], item[0]))[:top_sequences]

        return {
            "total_patterns": len(patterns),
            "total_chains": sum(p.frequency for p in patterns),
            "avg_chain_length": sum(lengths) / len(lengths) if lengths else 0.0,
            "max_chain_length": max(lengths) if lengths else 0,
            "min_chain_length": min(lengths) if lengths else 0,
            "chain_length_distribution": {str(k): v for k, v in sorted(length_distribution.items())},
            "common_sequences": [{"sequence": s, "count": c} for s, c in common],
        }
