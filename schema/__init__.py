"""Schema definitions for trip records, aggregate products and query filters."""
__all__ = [
    'RawTrip', 'AnonymizedTripRecord',
    'ODMatrixEntry', 'HeatmapEntry', 'TripChainPattern', 'ZoneTransitionMatrix', 'ModeShareEntry',
    'QueryFilters',
]

def __getattr__(name):
    if name in ('RawTrip', 'AnonymizedTripRecord'):
        from .records import RawTrip, AnonymizedTripRecord
        return {'RawTrip': RawTrip, 'AnonymizedTripRecord': AnonymizedTripRecord}[name]
    elif name in ('ODMatrixEntry', 'HeatmapEntry', 'TripChainPattern', 'ZoneTransitionMatrix', 'ModeShareEntry'):
        from . import aggregates
        return getattr(aggregates, name)
    elif name == 'QueryFilters':
        from .filters import QueryFilters
        return QueryFilters
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
