"""
agentgrid - coordination and safe consolidation for agents sharing a tabular store
"""

__version__ = "1.0.0"
