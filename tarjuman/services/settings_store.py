"""User settings persistence (JSON file under the data directory)."""

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from tarjuman.models.schemas import PipelineSettings, SettingsUpdate

logger = logging.getLogger("tarjuman.settings")


class SettingsStore:
    """Holds the current PipelineSettings and saves every change to disk.

    The pipeline reads a snapshot at start; changes made while it runs take
    effect on the next start.
    """

    def __init__(self, path: Path, defaults: PipelineSettings | None = None):
        self.path = Path(path)
        self.defaults = defaults or PipelineSettings()
        self._settings = self._load()

    def _load(self) -> PipelineSettings:
        if not self.path.exists():
            return self.defaults
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            merged = {**self.defaults.model_dump(), **data}
            settings = PipelineSettings(**merged)
            logger.info(f"Settings restored from {self.path}")
            return settings
        except (OSError, ValueError, TypeError, ValidationError) as exc:
            logger.warning(f"Could not read {self.path}, using defaults: {exc}")
            return self.defaults

    def get(self) -> PipelineSettings:
        return self._settings

    def update(self, update: SettingsUpdate) -> PipelineSettings:
        """Merge a partial update. Raises ValidationError on bad values."""
        merged = self._settings.model_dump()
        merged.update(update.model_dump(exclude_none=True))
        self._settings = PipelineSettings(**merged)
        self.save()
        return self._settings

    def reset(self) -> PipelineSettings:
        self._settings = self.defaults
        self.save()
        return self._settings

    def save(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(self._settings.model_dump(), indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
            logger.info(f"Settings saved to {self.path}")
        except OSError as exc:
            logger.error(f"Could not save settings: {exc}")
