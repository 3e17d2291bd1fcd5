"""
Trip Analytics Privacy Core
===========================
Privacy-preserving analytics over recorded trips.

Raw trips are pseudonymized, spatiotemporally bucketed and k-anonymity
gated by the Anonymization Orchestrator; aggregate products (OD matrix,
heatmap, trip chains, mode share) are built from the anonymized store and
receive Laplace noise before disclosure.
"""

__version__ = "1.0.0"

from .config import (
    Config, PrivacyConfig, BucketConfig, ChainConfig, OrchestratorConfig, AggregationConfig, DataConfig
)
from .errors import (
    TripAnalyticsError, DataAccessError, RecordTransformError, JobConflictError, JobNotFoundError, JobCancelledError
)

__all__ = [
    # Config
    "Config", "PrivacyConfig", "BucketConfig", "ChainConfig", "OrchestratorConfig",
    "AggregationConfig", "DataConfig",
    # Errors
    "TripAnalyticsError", "DataAccessError", "RecordTransformError", "JobConflictError", "JobNotFoundError",
    "JobCancelledError",
    # Components (loaded lazily)
    "Bucketer", "Pseudonymizer", "KAnonymityGate", "LaplaceMechanism",
    "AnonymizationOrchestrator", "AnonymizationJobRunner", "RunResult",
]


def __getattr__(name):
    if name == 'Bucketer':
        from .bucketing import Bucketer
        return Bucketer
    elif name == 'Pseudonymizer':
        from .pseudonymizer import Pseudonymizer
        return Pseudonymizer
    elif name == 'KAnonymityGate':
        from .suppression import KAnonymityGate
        return KAnonymityGate
    elif name == 'LaplaceMechanism':
        from .primitives import LaplaceMechanism
        return LaplaceMechanism
    elif name in ('AnonymizationOrchestrator', 'AnonymizationJobRunner', 'RunResult'):
        from . import pipeline
        return getattr(pipeline, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
