"""YAML-backed settings store."""

import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import ValidationError

from vpn_deploy.config.models import Settings
from vpn_deploy.utils.errors import ConfigurationError
from vpn_deploy.utils.logging import get_logger

logger = get_logger(__name__)


class SettingsStore:
    """Loads and saves Settings as YAML."""

    def __init__(self, path: Path):
        """Initialize settings store.

        Args:
            path: Path to settings.yaml
        """
        self.path = Path(path)

    def load(self) -> Settings:
        """Load and validate settings.

        Returns:
            Settings; defaults when the file does not exist

        Raises:
            ConfigurationError: If the file is not valid YAML or fails validation
        """
        if not self.path.exists():
            return Settings()

        try:
            with open(self.path, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML: {e}", cause=e)

        if not isinstance(data, dict):
            raise ConfigurationError(
                "Settings file must contain a mapping",
                errors=[{"loc": ["settings"], "msg": "expected a mapping"}],
            )

        return self._validate(data)

    def save(self, settings: Settings) -> None:
        """Write settings atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".settings-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(settings.model_dump(), f, default_flow_style=False, sort_keys=True)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug(f"Settings saved to {self.path}")

    def update(self, **changes: Any) -> Settings:
        """Apply changes, validate, and save.

        Args:
            **changes: Setting names and new values

        Returns:
            The updated settings

        Raises:
            ConfigurationError: If a name is unknown or a value is invalid
        """
        unknown = sorted(set(changes) - set(Settings.model_fields))
        if unknown:
            raise ConfigurationError(
                "Unknown setting(s)",
                errors=[{"loc": [name], "msg": "unknown setting"} for name in unknown],
            )

        data = self.load().model_dump()
        data.update(changes)
        settings = self._validate(data)
        self.save(settings)
        logger.info(f"Settings updated: {', '.join(sorted(changes))}")
        return settings

    def _validate(self, data: Dict[str, Any]) -> Settings:
        try:
            return Settings(**data)
        except ValidationError as e:
            errors: List[Dict] = [
                {"loc": list(error["loc"]), "msg": error["msg"]} for error in e.errors()
            ]
            raise ConfigurationError(
                f"Settings validation failed with {len(errors)} error(s)",
                errors=errors,
            )
