"""CodeFlow CLI: annotation readiness and flow tracing over an indexed code graph."""

__version__ = "0.3.0"
