"""
k-Anonymity Suppression.

Groups whose support falls below a threshold are withheld entirely. The
same gate is used for user trip groups in the Orchestrator and for chain
pattern frequencies in the Trip-Chain Miner, each with its own threshold.

Suppression happens on TRUE counts, before any noise is added, and is a
filtering decision rather than an error.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Generic, Hashable, Sized, TypeVar


logger = logging.getLogger(__name__)

K = TypeVar('K', bound=Hashable)
V = TypeVar('V', bound=Sized)


@dataclass
class SuppressionResult(Generic[K, V]):
    """Outcome of applying the gate to a set of groups."""
    kept: Dict[K, V] = field(default_factory=dict)
    suppressed: Dict[K, V] = field(default_factory=dict)

    @property
    def suppressed_count(self) -> int:
        return len(self.suppressed)

    @property
    def suppressed_members(self) -> int:
        return sum(len(members) for members in self.suppressed.values())

    @property
    def suppression_rate(self) -> float:
        total = len(self.kept) + len(self.suppressed)
        return self.suppressed_count / total if total > 0 else 0.0


class KAnonymityGate:
    """
    Withholds groups with fewer than `threshold` members.

    Example:
    - threshold=5, user A has 7 eligible trips, user B has 3
    - A's trips are released, B's trips produce no output at all
    """

    def __init__(self, threshold: int = 5, label: str = "group"):
        """
        Initialize the gate.

        Args:
            threshold: Minimum group size to release.
            label: Name of the grouped unit, used in log messages.
        """
        if threshold < 1:
            raise ValueError("k-anonymity threshold must be >= 1")

        self.threshold = threshold
        self.label = label

        logger.debug(f"KAnonymityGate initialized: threshold={threshold}, label={label}")

    def passes(self, support: int) -> bool:
        """Whether a group with this support may be released."""
        return support >= self.threshold

    def partition(self, groups: Dict[K, V]) -> SuppressionResult[K, V]:
        """
        Split groups into released and suppressed.

        Args:
            groups: Mapping of group key -> members (anything with len()).

        Returns:
            SuppressionResult with kept and suppressed groups.
        """
        result: SuppressionResult[K, V] = SuppressionResult()
        for key, members in groups.items():
            if self.passes(len(members)):
                result.kept[key] = members
            else:
                result.suppressed[key] = members

        logger.info(
            f"k-anonymity (k={self.threshold}): {result.suppressed_count}/{len(groups)} "
            f"{self.label}s suppressed ({result.suppression_rate * 100:.2f}%)"
        )
        return result

    def filter_counts(self, counts: Dict[K, int]) -> Dict[K, int]:
        """Keep only keys whose count meets the threshold."""
        kept = {key: count for key, count in counts.items() if self.passes(count)}
        logger.info(
            f"k-anonymity (k={self.threshold}): {len(counts) - len(kept)}/{len(counts)} "
            f"{self.label}s suppressed"
        )
        return kept
