"""
Disclosure-time noise injection.

Applies the Laplace mechanism once, independently, to the count field of
every entry of a product just before it leaves the core:
- ODMatrixEntry.trip_count
- HeatmapEntry.trip_count
- TripChainPattern.frequency
- ModeShareEntry.count

Totals, averages and distributions derived from the true counts are NOT
noised. Each call draws fresh noise; there is no budget accounting across
calls, so repeated releases of overlapping data can be averaged.
"""

import logging
from dataclasses import replace
from typing import Callable, List, Optional, TypeVar

from core.config import PrivacyConfig
from core.primitives import LaplaceMechanism
from engine.heatmap import heatmap_sort_key
from engine.mode_share import with_percentages
from engine.od_matrix import od_sort_key
from schema.aggregates import HeatmapEntry, ModeShareEntry, ODMatrixEntry, TripChainPattern


logger = logging.getLogger(__name__)

E = TypeVar('E')


class NoiseInjector:
    """
    Stateless apart from its random generator.

    Example:
        injector = NoiseInjector(PrivacyConfig(epsilon=0.5))
        disclosed = injector.disclose_od(builder.build(start, end))
    """

    def __init__(self, config: Optional[PrivacyConfig] = None):
        self.config = config or PrivacyConfig()
        self.mechanism = LaplaceMechanism(epsilon=self.config.epsilon, seed=self.config.noise_seed)

    @property
    def epsilon(self) -> float:
        return self.config.epsilon

    def add_noise(self, counts: List[int]) -> List[int]:
        return self.mechanism.add_noise(counts)

    def _disclose(
        self,
        entries: List[E],
        count_field: str,
        sort_key: Callable[[E], tuple]
    ) -> List[E]:
        noisy = self.add_noise([getattr(e, count_field) for e in entries])
        disclosed = [replace(e, **{count_field: value}) for e, value in zip(entries, noisy)]

        if self.config.drop_zero_after_noise:
            disclosed = [e for e in disclosed if getattr(e, count_field) > 0]

        disclosed.sort(key=sort_key)
        logger.info(
            f"Disclosed {len(disclosed):,}/{len(entries):,} entries "
            f"(epsilon={self.epsilon}, field={count_field})"
        )
        return disclosed

    def disclose_od(self, entries: List[ODMatrixEntry]) -> List[ODMatrixEntry]:
        return self._disclose(entries, 'trip_count', od_sort_key)

    def disclose_heatmap(self, entries: List[HeatmapEntry]) -> List[HeatmapEntry]:
        return self._disclose(entries, 'trip_count', heatmap_sort_key)

    def disclose_chains(self, patterns: List[TripChainPattern]) -> List[TripChainPattern]:
        return self._disclose(patterns, 'frequency', lambda p: (-p.frequency, p.pattern))

    def disclose_mode_share(self, entries: List[ModeShareEntry]) -> List[ModeShareEntry]:
        """Noise counts, then recompute percentages from the noisy counts."""
        return with_percentages(self._disclose(entries, 'count', lambda e: (-e.count, e.mode)))
