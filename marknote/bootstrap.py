"""Bootstrap logic that prepares runtime directories and the share registry."""

from __future__ import annotations

import logging
from pathlib import Path

from . import config as config_module
from .config import AppConfig, load_config

LOGGER = logging.getLogger(__name__)


class BootstrapError(RuntimeError):
    """Raised when initialization cannot be completed."""


class Bootstrapper:
    """High level object orchestrating initialization steps."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> None:
        """Run all bootstrap tasks."""

        LOGGER.debug("Starting bootstrap sequence")
        self._ensure_directories()
        self._ensure_share_registry()
        LOGGER.info("Bootstrap completed successfully")

    def _ensure_directories(self) -> None:
        for label, path in (
            ("notes", self._config.notes_root),
            ("images", self._config.images_root),
            ("log", self._config.log_root),
        ):
            if not config_module.directory_is_writable(path):
                raise BootstrapError(f"The {label} directory '{path}' is not writable")
            LOGGER.debug("Ensured directory exists: %s", path)

    def _ensure_share_registry(self) -> None:
        shares_file = self._config.shares_file
        if not shares_file.exists():
            shares_file.write_text("{}", encoding="utf-8")
            LOGGER.debug("Created empty share registry at %s", shares_file)
        if not self._config.credentials_file.exists():
            LOGGER.warning(
                "No login configured at '%s'; run 'set-login' before signing in.",
                self._config.credentials_file,
            )


def initialize_app(config_path: Path | None = None) -> AppConfig:
    """Convenience helper that loads configuration and runs initialization."""

    config = load_config(config_path=config_path)
    bootstrapper = Bootstrapper(config)
    bootstrapper.initialize()
    return config


__all__ = ["BootstrapError", "Bootstrapper", "initialize_app"]
