# envoy_monitor/services/capability_store.py

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional


class CapabilityStore:
    """In-memory device host: settings in, capability values and availability out."""

    def __init__(self, settings: Optional[Mapping[str, Any]] = None):
        self._log = logging.getLogger("envoy.host")
        self.settings: Dict[str, Any] = dict(settings or {})
        self.values: Dict[str, float] = {}
        self.available: bool | None = None
        self.unavailable_message: str | None = None
        self.updated_at: datetime | None = None

    # ------------------------------------------------------------------
    def get_settings(self) -> Dict[str, Any]:
        return dict(self.settings)

    def update_settings(self, new_settings: Mapping[str, Any]) -> None:
        self.settings.update(new_settings)

    def set_capability_value(self, name: str, value: float) -> None:
        self.values[name] = value
        self.updated_at = datetime.now(timezone.utc)

    def set_available(self) -> None:
        if self.available is False:
            self._log.info("Device available again")
        self.available = True
        self.unavailable_message = None

    def set_unavailable(self, message: str) -> None:
        if self.available is not False or message != self.unavailable_message:
            self._log.warning("Device unavailable: %s", message)
        self.available = False
        self.unavailable_message = message

    # ------------------------------------------------------------------
    def snapshot(self) -> Dict[str, Any]:
        return {
            "available": self.available,
            "message": self.unavailable_message,
            "values": dict(self.values),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
