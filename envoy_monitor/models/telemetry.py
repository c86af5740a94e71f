# envoy_monitor/models/telemetry.py

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional

from envoy_monitor.errors import ParseError


PRODUCTION_METER = "production"
NET_CONSUMPTION_METER = "net-consumption"
OTHER_METER = "other"


class MeteringMode(str, Enum):
    AUTO = "auto"
    FORCE_UNMETERED = "force-unmetered"
    FORCE_METERED = "force-metered"

    @classmethod
    def parse(cls, raw: str) -> "MeteringMode":
        value = (raw or "").strip().lower().replace("_", "-")
        for mode in cls:
            if mode.value == value:
                return mode
        raise ValueError(
            f"Unknown metering_mode '{raw}' (expected one of: "
            + ", ".join(m.value for m in cls)
            + ")"
        )


def _require(entry: Any, key: str, what: str) -> Any:
    if not isinstance(entry, dict):
        raise ParseError(f"{what} entry is not an object: {entry!r}")
    if entry.get(key) is None:
        raise ParseError(f"{what} entry is missing '{key}'")
    return entry[key]


def _as_number(value: Any, field_name: str) -> float:
    if isinstance(value, bool):
        raise ParseError(f"'{field_name}' is not numeric: {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ParseError(f"'{field_name}' is not numeric: {value!r}") from None


def _as_list(payload: Any, what: str) -> list:
    if not isinstance(payload, list):
        raise ParseError(f"{what} payload is not a list")
    return payload


@dataclass
class MeterDescriptor:
    eid: Any
    measurement_type: str
    raw_type: str | None = None

    @classmethod
    def from_payload(cls, entry: Any) -> "MeterDescriptor":
        eid = _require(entry, "eid", "Meter")
        raw_type = entry.get("measurementType")
        if raw_type in (PRODUCTION_METER, NET_CONSUMPTION_METER):
            measurement_type = raw_type
        else:
            measurement_type = OTHER_METER
        return cls(eid=eid, measurement_type=measurement_type, raw_type=raw_type)

    @classmethod
    def list_from_payload(cls, payload: Any) -> List["MeterDescriptor"]:
        return [cls.from_payload(entry) for entry in _as_list(payload, "Meter list")]


@dataclass
class MeterReading:
    eid: Any
    active_power_w: float

    @classmethod
    def from_payload(cls, entry: Any) -> "MeterReading":
        eid = _require(entry, "eid", "Meter reading")
        power = _as_number(_require(entry, "activePower", "Meter reading"), "activePower")
        return cls(eid=eid, active_power_w=power)

    @classmethod
    def list_from_payload(cls, payload: Any) -> List["MeterReading"]:
        return [cls.from_payload(entry) for entry in _as_list(payload, "Meter readings")]


@dataclass
class ProductionEntry:
    w_now: float | None
    wh_today: float | None = None
    kind: str | None = None

    @classmethod
    def from_payload(cls, entry: Any, *, require_power: bool = False) -> "ProductionEntry":
        if require_power:
            w_now = _require(entry, "wNow", "Production")
        elif isinstance(entry, dict):
            w_now = entry.get("wNow")
        else:
            raise ParseError(f"Production entry is not an object: {entry!r}")

        wh_today = entry.get("whToday")
        if wh_today is None:
            wh_today = entry.get("wattHoursToday")
        return cls(
            w_now=_as_number(w_now, "wNow") if w_now is not None else None,
            wh_today=_as_number(wh_today, "whToday") if wh_today is not None else None,
            kind=entry.get("type"),
        )


@dataclass
class ProductionReport:
    production: List[ProductionEntry]

    @property
    def first(self) -> ProductionEntry:
        return self.production[0]

    @classmethod
    def from_payload(cls, payload: Any) -> "ProductionReport":
        if not isinstance(payload, dict):
            raise ParseError("Production report is not an object")
        entries = payload.get("production")
        if not isinstance(entries, list) or not entries:
            raise ParseError("Production report has no production entries")

        # Only the leading entry feeds a poll; later ones (eim) may omit wNow.
        parsed = [ProductionEntry.from_payload(entries[0], require_power=True)]
        parsed.extend(ProductionEntry.from_payload(entry) for entry in entries[1:])
        return cls(production=parsed)


@dataclass
class PollResult:
    meter_power_kwh: Optional[float]
    measure_power_w: Optional[float]
    consumption_power_w: Optional[float]
    grid_power_w: Optional[float]
    available: bool
    error_message: Optional[str] = None
    is_metered: Optional[bool] = None
    join_skipped: bool = False

    @classmethod
    def unavailable(cls, message: str) -> "PollResult":
        return cls(
            meter_power_kwh=None,
            measure_power_w=None,
            consumption_power_w=None,
            grid_power_w=None,
            available=False,
            error_message=message,
        )
