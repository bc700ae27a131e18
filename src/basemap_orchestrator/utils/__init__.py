"""
Utilities Module

Configuration loading and logging setup shared by the orchestrator.
"""

from .config import Config, DockerConfig, PathsConfig, PipelineOptions
from .logging_config import configure_logging

__all__ = [
    "Config",
    "DockerConfig",
    "PathsConfig",
    "PipelineOptions",
    "configure_logging",
]
