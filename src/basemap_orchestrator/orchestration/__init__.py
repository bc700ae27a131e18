"""
Orchestration Module

Make-style targets and the basemap pipeline built from them.
"""

from .pipeline import BasemapPipeline
from .targets import RunSummary, Target, TargetRegistry

__all__ = [
    "BasemapPipeline",
    "RunSummary",
    "Target",
    "TargetRegistry",
]
