"""Function call instrumentation."""

from .runtime import snapshot, t

__all__ = ["t", "snapshot"]
