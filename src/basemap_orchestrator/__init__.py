"""
Basemap Orchestrator

Command-line orchestration for an OpenMapTiles-style vector tile build.
Sequences Docker and docker-compose invocations (PostGIS, openmaptiles-tools,
tile servers, style editors) that import OpenStreetMap data, generate SQL
and render MBTiles.

All heavy lifting happens inside the external images; this package only
decides which containers run, with which arguments, and in which order.
"""

__version__ = "1.0.0"

from . import containers
from . import monitoring
from . import orchestration
from . import utils
from .exceptions import OrchestratorError

__all__ = [
    "containers",
    "monitoring",
    "orchestration",
    "utils",
    "OrchestratorError",
]
