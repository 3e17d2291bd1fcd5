"""Aggregate builders and disclosure-time noise injection."""
__all__ = ['ODMatrixBuilder', 'HeatmapBuilder', 'TripChainMiner', 'ModeShareBuilder', 'NoiseInjector']

def __getattr__(name):
    if name == 'ODMatrixBuilder':
        from .od_matrix import ODMatrixBuilder
        return ODMatrixBuilder
    elif name == 'HeatmapBuilder':
        from .heatmap import HeatmapBuilder
        return HeatmapBuilder
    elif name == 'TripChainMiner':
        from .trip_chains import TripChainMiner
        return TripChainMiner
    elif name == 'ModeShareBuilder':
        from .mode_share import ModeShareBuilder
        return ModeShareBuilder
    elif name == 'NoiseInjector':
        from .disclosure import NoiseInjector
        return NoiseInjector
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
