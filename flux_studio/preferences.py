"""Per-kind form defaults, persisted as a JSON file."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from flux_studio.models import OperationKind
from flux_studio.operations import parse_options

logger = logging.getLogger(__name__)


class Preferences:
    """Default options for each operation kind.

    Loaded once at startup and handed to the orchestrator, which merges them
    under the options of every request. ``update`` validates and writes the
    file back immediately.
    """

    def __init__(self, path: Path | None = None, defaults: dict[str, dict] | None = None) -> None:
        self.path = Path(path) if path else None
        self._defaults: dict[str, dict[str, Any]] = defaults or {}

    @classmethod
    def load(cls, path: Path) -> "Preferences":
        path = Path(path)
        if not path.exists():
            return cls(path)
        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable preferences file %s: %s", path, e)
            return cls(path)
        known = {k.value for k in OperationKind}
        return cls(path, {k: v for k, v in data.items() if k in known and isinstance(v, dict)})

    def save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._defaults, indent=2))

    def options_for(self, kind: OperationKind) -> dict[str, Any]:
        return dict(self._defaults.get(kind.value, {}))

    def update(self, kind: OperationKind, options: dict[str, Any]) -> dict[str, Any]:
        """Replace the defaults of ``kind``. Raises ValidationError on bad options."""
        parse_options(kind, options)
        self._defaults[kind.value] = dict(options)
        self.save()
        return self.options_for(kind)

    def as_dict(self) -> dict[str, dict[str, Any]]:
        return {k: dict(v) for k, v in self._defaults.items()}
