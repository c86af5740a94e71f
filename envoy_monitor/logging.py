# envoy_monitor/logging.py

from __future__ import annotations

import json
import logging
import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping

from envoy_monitor.models.telemetry import MeteringMode, PollResult


LOGGER_NAME = "envoy"

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Addressed by their own names in debug_modules.
_LIBRARY_LOGGERS = ("urllib3", "requests")


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger in the ``envoy`` tree.

    Short names are qualified, so ``get_logger("device.client")`` is
    ``envoy.device.client``. ``urllib3`` and ``requests`` keep their own names.
    """
    if not name or name == LOGGER_NAME:
        return logging.getLogger(LOGGER_NAME)
    if name.startswith(LOGGER_NAME + ".") or name.split(".")[0] in _LIBRARY_LOGGERS:
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


class _ThresholdFilter(logging.Filter):
    """Pass records at or above ``level``, plus anything from a debug module."""

    def __init__(self, level: int, debug_loggers: Iterable[str]):
        super().__init__()
        self.level = level
        self.debug_loggers = tuple(debug_loggers)

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= self.level:
            return True
        return any(
            record.name == name or record.name.startswith(name + ".")
            for name in self.debug_loggers
        )


class ConsoleLog:
    """Console output for the ``envoy`` logger tree.

    Quiet mode still writes warnings and errors to stderr, so a ``watch`` loop
    reports an unreachable gateway even when poll output is suppressed.
    """

    def __init__(self, level: str = "INFO", quiet: bool = False, debug_modules: Iterable[str] | None = None):
        self.level = level.upper()
        self.quiet = quiet
        self.debug_modules = [get_logger(name).name for name in (debug_modules or [])]

    def _threshold(self) -> int:
        if self.quiet:
            return logging.WARNING
        return getattr(logging, self.level, logging.INFO)

    def setup(self) -> logging.Logger:
        handler = logging.StreamHandler(sys.stderr if self.quiet else sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
        handler.addFilter(_ThresholdFilter(self._threshold(), self.debug_modules))

        root = logging.getLogger()
        root.handlers.clear()
        root.setLevel(logging.DEBUG)
        root.addHandler(handler)

        # urllib3 logs every connection at DEBUG, including gateway URLs.
        logging.getLogger("urllib3").setLevel(logging.INFO)
        for name in self.debug_modules:
            logging.getLogger(name).setLevel(logging.DEBUG)

        return get_logger()


@dataclass
class RunLogEntry:
    timestamp: str
    address: str | None
    serial: str | None
    metering_mode: MeteringMode
    result: PollResult
    capabilities: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "address": self.address,
            "serial": self.serial,
            "metering_mode": self.metering_mode.value,
            "result": asdict(self.result),
            "capabilities": dict(self.capabilities),
        }


class StructuredLog:
    """Appends one JSON line per poll."""

    def __init__(self, path: str | None, enabled: bool = False):
        self.enabled = enabled and bool(path)
        self.path = Path(path).expanduser() if path else None
        if self.enabled:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def record(
        self,
        result: PollResult,
        *,
        serial: str | None,
        address: str | None,
        metering_mode: MeteringMode,
        capabilities: Mapping[str, float] | None = None,
        now: datetime | None = None,
    ) -> RunLogEntry:
        entry = RunLogEntry(
            timestamp=(now or datetime.now(timezone.utc)).isoformat(),
            address=address,
            serial=serial,
            metering_mode=metering_mode,
            result=result,
            capabilities=dict(capabilities or {}),
        )
        self.write(entry)
        return entry

    def write(self, entry: RunLogEntry) -> None:
        if not self.enabled:
            return
        line = json.dumps(entry.to_dict(), sort_keys=True)
        try:
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except OSError as exc:
            get_logger("structured").warning("Could not append poll record to %s: %s", self.path, exc)
