"""
Differential Privacy Primitives.

Laplace mechanism for counting queries. Each released count receives one
independent Laplace(0, sensitivity/epsilon) draw, sampled by inverse CDF
from a uniform draw on (-0.5, 0.5), and is then rounded and clamped at 0.

Rounding and clamping are post-processing and consume no budget. Noise is
drawn independently per release; there is no accounting across repeated
releases of the same data.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

import numpy as np


logger = logging.getLogger(__name__)

COUNTING_SENSITIVITY = 1.0


def get_rng(seed: Optional[int] = None) -> np.random.Generator:
    """Get a new RNG; seed=None draws fresh entropy from the OS."""
    return np.random.default_rng(seed)


def laplace_noise(size: int, scale: float, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """
    Sample Laplace(0, scale) noise by inverse-CDF.

    For u ~ Uniform(-0.5, 0.5):  X = -scale * sign(u) * ln(1 - 2|u|)

    Args:
        size: Number of samples
        scale: Laplace scale b (variance 2b^2)
        rng: Random generator (optional)

    Returns:
        Array of float samples
    """
    if scale <= 0:
        raise ValueError(f"scale must be > 0, got {scale}")

    rng = rng or get_rng()
    u = rng.uniform(-0.5, 0.5, size)
    # uniform() is half-open at the low end; -0.5 would give ln(0)
    u = np.where(u <= -0.5, np.nextafter(-0.5, 0.0), u)
    return -scale * np.sign(u) * np.log1p(-2.0 * np.abs(u))


def add_laplace_noise(
    counts: Sequence[Union[int, float]],
    epsilon: float,
    rng: Optional[np.random.Generator] = None,
    sensitivity: float = COUNTING_SENSITIVITY
) -> List[int]:
    """
    Add Laplace noise to counts and post-process to non-negative integers.

    Args:
        counts: True counts
        epsilon: Privacy parameter (> 0)
        rng: Random generator (optional)
        sensitivity: L1 sensitivity (1 for counting queries)

    Returns:
        max(0, round(count + noise)) for each count
    """
    if epsilon <= 0:
        raise ValueError(f"epsilon must be > 0, got {epsilon}")

    true_values = np.asarray(counts, dtype=np.float64)
    if true_values.size == 0:
        return []

    noise = laplace_noise(true_values.size, sensitivity / epsilon, rng)
    noisy = np.maximum(0, np.round(true_values + noise)).astype(np.int64)
    return [int(v) for v in noisy]


@dataclass
class LaplaceMechanism:
    """
    Laplace mechanism with fixed epsilon and sensitivity.

    Stateless apart from its random generator, so separate instances can be
    used concurrently.
    """
    epsilon: float = 1.0
    sensitivity: float = COUNTING_SENSITIVITY
    seed: Optional[int] = None

    def __post_init__(self):
        if self.epsilon <= 0:
            raise ValueError(f"epsilon must be > 0, got {self.epsilon}")
        if self.sensitivity <= 0:
            raise ValueError(f"sensitivity must be > 0, got {self.sensitivity}")
        self._rng = get_rng(self.seed)

    @property
    def scale(self) -> float:
        """Laplace scale b = sensitivity / epsilon."""
        return self.sensitivity / self.epsilon

    @property
    def variance(self) -> float:
        """Noise variance 2b^2 (before rounding and clamping)."""
        return 2.0 * self.scale ** 2

    def add_noise(self, counts: Sequence[Union[int, float]]) -> List[int]:
        """Noise a batch of counts."""
        return add_laplace_noise(counts, self.epsilon, self._rng, self.sensitivity)

    def __repr__(self) -> str:
        return f"LaplaceMechanism(epsilon={self.epsilon}, scale={self.scale:.4f})"
