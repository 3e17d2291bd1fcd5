"""Raw trip sources."""
__all__ = ['TripSource', 'InMemoryTripSource', 'DataFrameTripSource']

def __getattr__(name):
    if name in __all__:
        from . import trip_source
        return getattr(trip_source, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
