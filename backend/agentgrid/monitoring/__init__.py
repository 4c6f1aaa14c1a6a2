"""
Observability for agent coordination
"""

from .metrics import CoordinationMetrics

__all__ = ["CoordinationMetrics"]
