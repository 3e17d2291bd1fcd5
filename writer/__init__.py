"""Output writers."""
__all__ = ['ExportWriter']

def __getattr__(name):
    if name == 'ExportWriter':
        from .export_writer import ExportWriter
        return ExportWriter
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
