from __future__ import annotations

from family_organizer.app import app

__all__ = ["app"]
