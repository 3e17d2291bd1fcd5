"""Anonymized record store and job-state store."""
__all__ = ['AnonymizedStore', 'InMemoryAnonymizedStore', 'FileAnonymizedStore', 'InMemoryJobStore', 'JobStatus']

def __getattr__(name):
    if name in ('AnonymizedStore', 'InMemoryAnonymizedStore', 'FileAnonymizedStore'):
        from . import anonymized_store
        return getattr(anonymized_store, name)
    elif name in ('InMemoryJobStore', 'JobStatus'):
        from . import job_store
        return getattr(job_store, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
