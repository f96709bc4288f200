"""Configuration for the enhancement pipeline.

Resolve once, freeze, then pass the ``FrozenConfig`` explicitly into the
orchestrator:

    cfg = resolve_config({"api_key": "...", "rotation": "round-robin"})
"""

from .file_loader import ConfigFileError, FileConfigLoader
from .resolver import ConfigResolver, resolve_config
from .schema import EnhancerSettings
from .types import ConfigOrigin, FrozenConfig, SourceMap

__all__ = [
    "ConfigFileError",
    "ConfigOrigin",
    "ConfigResolver",
    "EnhancerSettings",
    "FileConfigLoader",
    "FrozenConfig",
    "SourceMap",
    "resolve_config",
]
