"""Configuration resolution with precedence handling.

Precedence, highest first: Programmatic > Environment > Project file >
Home file > Defaults.
"""

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from gemini_enhance.exceptions import ConfigurationError

from .file_loader import ConfigFileError, FileConfigLoader
from .schema import EnhancerSettings
from .types import ConfigOrigin, FrozenConfig

log = logging.getLogger(__name__)

ENV_PREFIX = "GEMINI_ENHANCE_"


class ConfigResolver:
    """Merges configuration sources and freezes the result."""

    def __init__(self, file_loader: FileConfigLoader | None = None) -> None:
        """Initialize with an optional custom file loader."""
        self.file_loader = file_loader or FileConfigLoader()

    def resolve(
        self,
        programmatic: dict[str, Any] | None = None,
        *,
        profile: str | None = None,
        project_root: Path | None = None,
    ) -> FrozenConfig:
        """Resolve configuration from all sources.

        Raises:
            ConfigurationError: If a project file is malformed or the merged
                values fail validation.
        """
        if profile is None:
            profile = os.getenv(f"{ENV_PREFIX}PROFILE")

        merged: dict[str, Any] = {}
        origin: dict[str, ConfigOrigin] = dict.fromkeys(
            EnhancerSettings.model_fields, "default"
        )

        try:
            home = self.file_loader.load_home_config(profile=profile)
        except ConfigFileError as e:
            # Home config errors are non-fatal; a broken personal file should
            # not block a project that is otherwise configured.
            log.warning("Ignoring home configuration: %s", e)
            home = {}
        self._apply(merged, origin, home, "file")

        try:
            project = self.file_loader.load_project_config(
                project_root=project_root, profile=profile
            )
        except ConfigFileError as e:
            raise ConfigurationError(str(e)) from e
        self._apply(merged, origin, project, "file")

        self._apply(merged, origin, self._env_values(), "env")
        self._apply(merged, origin, programmatic or {}, "programmatic")

        try:
            settings = EnhancerSettings(**merged)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        frozen = FrozenConfig.from_values(
            {**settings.to_dict(), "rotation": settings.rotation}, origin
        )
        log.debug("Resolved configuration: %s", frozen)
        return frozen

    def _apply(
        self,
        merged: dict[str, Any],
        origin: dict[str, ConfigOrigin],
        values: dict[str, Any],
        source: ConfigOrigin,
    ) -> None:
        for field, value in values.items():
            if field in EnhancerSettings.model_fields:  # Only known fields
                merged[field] = value
                origin[field] = source

    def _env_values(self) -> dict[str, Any]:
        """Return parsed values for fields actually set in the environment."""
        present = {k.upper() for k in os.environ if k.upper().startswith(ENV_PREFIX)}
        names = [
            name
            for name in EnhancerSettings.model_fields
            if f"{ENV_PREFIX}{name.upper()}" in present
        ]
        if not names:
            return {}
        try:
            settings = EnhancerSettings()
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid environment variable values for {', '.join(names)}: {e}"
            ) from e
        return {name: getattr(settings, name) for name in names}


def resolve_config(
    overrides: dict[str, Any] | None = None,
    *,
    profile: str | None = None,
    project_root: Path | None = None,
) -> FrozenConfig:
    """Resolve and freeze configuration for a pipeline run."""
    return ConfigResolver().resolve(
        overrides, profile=profile, project_root=project_root
    )
