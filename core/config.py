"""
Configuration management for the Trip Analytics privacy core.
Handles loading, validation, and access to configuration parameters.
"""

import configparser
import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional


logger = logging.getLogger(__name__)


def _parse_int_list(value: str) -> List[int]:
    """Parse a comma-separated list of integers ("0,300,600")."""
    return [int(item.strip()) for item in value.split(',') if item.strip()]


def _check_ascending(name: str, boundaries: List[int]) -> None:
    if len(boundaries) < 2:
        raise ValueError(f"{name} must contain at least 2 boundaries, got {boundaries}")
    for lower, upper in zip(boundaries, boundaries[1:]):
        if upper <= lower:
            raise ValueError(f"{name} must be strictly ascending, got {boundaries}")


@dataclass
class PrivacyConfig:
    """Anonymity and disclosure configuration."""

    # Minimum trips per user group before any of the group's trips are anonymized
    k_anonymity_threshold: int = 5

    # Minimum chain instances before a trip-chain pattern is disclosed
    chain_k_threshold: int = 5

    # Laplace mechanism (sensitivity 1 counting queries)
    epsilon: float = 1.0
    noise_seed: Optional[int] = None  # None = fresh OS entropy per disclosure
    drop_zero_after_noise: bool = True

    # Name of the environment variable holding the pseudonymization pepper
    pepper_env_var: str = "TRIP_ANALYTICS_PEPPER"

    def validate(self) -> None:
        """Validate privacy configuration."""
        if self.k_anonymity_threshold < 1:
            raise ValueError(f"k_anonymity_threshold must be >= 1, got {self.k_anonymity_threshold}")

        if self.chain_k_threshold < 1:
            raise ValueError(f"chain_k_threshold must be >= 1, got {self.chain_k_threshold}")

        if self.epsilon <= 0:
            raise ValueError(f"epsilon must be > 0, got {self.epsilon}")

        if not self.pepper_env_var:
            raise ValueError("pepper_env_var must be specified")


@dataclass
class BucketConfig:
    """Spatiotemporal bucketing configuration."""
    grid_size_degrees: float = 0.01  # ~1km grid cells
    time_bin_minutes: int = 15
    duration_boundaries: List[int] = field(
        default_factory=lambda: [0, 300, 600, 1800, 3600, 7200, 14400]  # seconds
    )
    distance_boundaries: List[int] = field(
        default_factory=lambda: [0, 500, 1000, 2000, 5000, 10000, 20000, 50000]  # meters
    )

    def validate(self) -> None:
        """Validate bucketing configuration."""
        if self.grid_size_degrees <= 0:
            raise ValueError(f"grid_size_degrees must be > 0, got {self.grid_size_degrees}")

        if not 0 < self.time_bin_minutes <= 60 or 60 % self.time_bin_minutes != 0:
            raise ValueError(f"time_bin_minutes must divide 60, got {self.time_bin_minutes}")

        _check_ascending("duration_boundaries", self.duration_boundaries)
        _check_ascending("distance_boundaries", self.distance_boundaries)


@dataclass
class ChainConfig:
    """Trip-chain mining configuration."""
    gap_minutes: int = 120  # split chains when consecutive starts are further apart
    max_pattern_length: int = 5
    min_frequency: int = 5
    top_n: int = 100

    def validate(self) -> None:
        """Validate chain configuration."""
        if self.gap_minutes <= 0:
            raise ValueError(f"gap_minutes must be > 0, got {self.gap_minutes}")
        if not 1 <= self.max_pattern_length <= 10:
            raise ValueError(f"max_pattern_length must be in [1, 10], got {self.max_pattern_length}")
        if self.min_frequency < 1:
            raise ValueError(f"min_frequency must be >= 1, got {self.min_frequency}")
        if self.top_n < 1:
            raise ValueError(f"top_n must be >= 1, got {self.top_n}")


@dataclass
class OrchestratorConfig:
    """Anonymization batch job configuration."""
    max_workers: int = 4
    progress_interval: int = 100  # records between job progress updates
    job_timeout_seconds: int = 1800

    def validate(self) -> None:
        """Validate orchestrator configuration."""
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.progress_interval < 1:
            raise ValueError(f"progress_interval must be >= 1, got {self.progress_interval}")
        if self.job_timeout_seconds < 1:
            raise ValueError(f"job_timeout_seconds must be >= 1, got {self.job_timeout_seconds}")


@dataclass
class AggregationConfig:
    """Aggregate builder configuration."""
    od_distance_source: str = "bucket_midpoint"  # 'bucket_midpoint' or 'exact'

    def validate(self) -> None:
        """Validate aggregation configuration."""
        if self.od_distance_source not in ('bucket_midpoint', 'exact'):
            raise ValueError(
                f"od_distance_source must be 'bucket_midpoint' or 'exact', got {self.od_distance_source}"
            )


@dataclass
class DataConfig:
    """Data-related configuration."""
    trips_path: str = ""
    store_path: str = ""
    output_path: str = "output"

    def validate(self) -> None:
        """Validate data configuration."""
        if not self.trips_path:
            raise ValueError("trips_path must be specified")
        if not self.store_path:
            raise ValueError("store_path must be specified")
        if not self.output_path:
            raise ValueError("output_path must be specified")


@dataclass
class Config:
    """Main configuration container."""
    privacy: PrivacyConfig = field(default_factory=PrivacyConfig)
    bucketing: BucketConfig = field(default_factory=BucketConfig)
    chains: ChainConfig = field(default_factory=ChainConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    data: DataConfig = field(default_factory=DataConfig)

    def validate(self, require_data: bool = True) -> None:
        """Validate entire configuration."""
        self.privacy.validate()
        self.bucketing.validate()
        self.chains.validate()
        self.orchestrator.validate()
        self.aggregation.validate()
        if require_data:
            self.data.validate()
        logger.info("Configuration validated successfully")

    @classmethod
    def from_ini(cls, config_path: str) -> "Config":
        """Load configuration from INI file."""
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Config file not found: {config_path}")

        parser = configparser.ConfigParser()
        parser.read(config_path, encoding='utf-8')

        config = cls()

        if 'privacy' in parser:
            sec = parser['privacy']
            if 'k_anonymity_threshold' in sec:
                config.privacy.k_anonymity_threshold = int(sec['k_anonymity_threshold'])
            if 'chain_k_threshold' in sec:
                config.privacy.chain_k_threshold = int(sec['chain_k_threshold'])
            if 'epsilon' in sec:
                config.privacy.epsilon = float(sec['epsilon'])
            if sec.get('noise_seed', '').strip():
                config.privacy.noise_seed = int(sec['noise_seed'])
            if 'drop_zero_after_noise' in sec:
                config.privacy.drop_zero_after_noise = sec.getboolean('drop_zero_after_noise')
            if 'pepper_env_var' in sec:
                config.privacy.pepper_env_var = sec['pepper_env_var'].strip()

        if 'bucketing' in parser:
            sec = parser['bucketing']
            if 'grid_size_degrees' in sec:
                config.bucketing.grid_size_degrees = float(sec['grid_size_degrees'])
            if 'time_bin_minutes' in sec:
                config.bucketing.time_bin_minutes = int(sec['time_bin_minutes'])
            if 'duration_boundaries' in sec:
                config.bucketing.duration_boundaries = _parse_int_list(sec['duration_boundaries'])
            if 'distance_boundaries' in sec:
                config.bucketing.distance_boundaries = _parse_int_list(sec['distance_boundaries'])

        if 'chains' in parser:
            sec = parser['chains']
            config.chains.gap_minutes = int(sec.get('gap_minutes', '120'))
            config.chains.max_pattern_length = int(sec.get('max_pattern_length', '5'))
            config.chains.min_frequency = int(sec.get('min_frequency', '5'))
            config.chains.top_n = int(sec.get('top_n', '100'))

        if 'orchestrator' in parser:
            sec = parser['orchestrator']
            config.orchestrator.max_workers = int(sec.get('max_workers', '4'))
            config.orchestrator.progress_interval = int(sec.get('progress_interval', '100'))
            config.orchestrator.job_timeout_seconds = int(sec.get('job_timeout_seconds', '1800'))

        if 'aggregation' in parser:
            sec = parser['aggregation']
            config.aggregation.od_distance_source = sec.get('od_distance_source', 'bucket_midpoint')

        if 'data' in parser:
            sec = parser['data']
            config.data.trips_path = sec.get('trips_path', '')
            config.data.store_path = sec.get('store_path', '')
            config.data.output_path = sec.get('output_path', 'output')

        logger.info(f"Configuration loaded from {config_path}")
        return config

    def to_ini(self, config_path: str) -> None:
        """Save configuration to INI file."""
        parser = configparser.ConfigParser()

        parser['privacy'] = {
            'k_anonymity_threshold': str(self.privacy.k_anonymity_threshold),
            'chain_k_threshold': str(self.privacy.chain_k_threshold),
            'epsilon': str(self.privacy.epsilon),
            'noise_seed': '' if self.privacy.noise_seed is None else str(self.privacy.noise_seed),
            'drop_zero_after_noise': str(self.privacy.drop_zero_after_noise).lower(),
            'pepper_env_var': self.privacy.pepper_env_var,
        }

        parser['bucketing'] = {
            'grid_size_degrees': str(self.bucketing.grid_size_degrees),
            'time_bin_minutes': str(self.bucketing.time_bin_minutes),
            'duration_boundaries': ','.join(str(b) for b in self.bucketing.duration_boundaries),
            'distance_boundaries': ','.join(str(b) for b in self.bucketing.distance_boundaries),
        }

        parser['chains'] = {
            'gap_minutes': str(self.chains.gap_minutes),
            'max_pattern_length': str(self.chains.max_pattern_length),
            'min_frequency': str(self.chains.min_frequency),
            'top_n': str(self.chains.top_n),
        }

        parser['orchestrator'] = {
            'max_workers': str(self.orchestrator.max_workers),
            'progress_interval': str(self.orchestrator.progress_interval),
            'job_timeout_seconds': str(self.orchestrator.job_timeout_seconds),
        }

        parser['aggregation'] = {
            'od_distance_source': self.aggregation.od_distance_source,
        }

        parser['data'] = {
            'trips_path': self.data.trips_path,
            'store_path': self.data.store_path,
            'output_path': self.data.output_path,
        }

        with open(config_path, 'w', encoding='utf-8') as f:
            parser.write(f)

        logger.info(f"Configuration saved to {config_path}")
