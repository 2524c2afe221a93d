"""Settings persistence to JSON file."""

import json
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from orderfeed.domain.settings import AppSettings


class SettingsStore:
    """Persists settings to a JSON file.

    Settings are stored in the user's home directory by default.

    Example:
        >>> store = SettingsStore()
        >>> settings = store.load()
        >>> settings.feed.max_rows = 100
        >>> store.save(settings)
    """

    DEFAULT_PATH = Path.home() / ".orderfeed_settings.json"

    def __init__(self, path: Optional[Path] = None):
        """Initialize settings store.

        Args:
            path: Optional custom path for settings file.
                  Defaults to ~/.orderfeed_settings.json
        """
        self._path = path or self.DEFAULT_PATH

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def load(self) -> AppSettings:
        """Load settings from file.

        Returns:
            AppSettings instance. If the file doesn't exist or is invalid,
            returns default settings.
        """
        if not self._path.exists():
            return AppSettings()

        try:
            data = json.loads(self._path.read_text())
            return AppSettings.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            # Corrupted settings fall back to defaults
            print(f"Warning: Could not load settings: {e}")
            return AppSettings()

    def save(self, settings: AppSettings) -> None:
        """Save settings to file, creating the parent directory if needed."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(settings.model_dump_json(indent=2))
