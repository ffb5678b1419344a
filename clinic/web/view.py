"""Minimal HTML view rendering for error pages."""

from __future__ import annotations

import html
from pathlib import Path
from string import Template
from typing import Any

VIEWS_DIR = Path(__file__).resolve().parent.parent / "views"


class ViewNotFoundError(FileNotFoundError):
    """Raised when a view template does not exist."""


class ViewRenderer:
    """Render ``$placeholder`` templates from the views directory."""

    def __init__(self, views_dir: str | Path = VIEWS_DIR, app_name: str = "SIGECLIN") -> None:
        self._views_dir = Path(views_dir)
        self._app_name = app_name

    def path_for(self, name: str) -> Path:
        """Map a view name such as ``errors/404`` to its file, inside the views dir."""
        candidate = (self._views_dir / f"{name}.html").resolve()
        if self._views_dir.resolve() not in candidate.parents:
            raise ViewNotFoundError(f"View not found: {name}")
        return candidate

    def exists(self, name: str) -> bool:
        try:
            return self.path_for(name).is_file()
        except ViewNotFoundError:
            return False

    def render(self, name: str, context: dict[str, Any] | None = None) -> str:
        """Render a view with HTML-escaped context values."""
        path = self.path_for(name)
        if not path.is_file():
            raise ViewNotFoundError(f"View not found: {name}")
        values = {"app_name": self._app_name}
        values.update(context or {})
        escaped = {key: html.escape(str(value)) for key, value in values.items()}
        return Template(path.read_text(encoding="utf-8")).safe_substitute(escaped)
