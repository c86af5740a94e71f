# envoy_monitor/services/output_formatter.py

from __future__ import annotations

import json
from typing import Any, Mapping, Optional

from envoy_monitor.models.telemetry import PollResult


def _fmt(value: Optional[float], unit: str, precision: int = 0) -> str:
    if value is None:
        return "n/a"
    return f"{value:.{precision}f}{unit}"


def result_to_dict(
    result: PollResult,
    *,
    serial: str | None = None,
    address: str | None = None,
    capabilities: Mapping[str, Any] | None = None,
) -> dict:
    return {
        "serial": serial,
        "address": address,
        "available": result.available,
        "error": result.error_message,
        "metered": result.is_metered,
        "join_skipped": result.join_skipped,
        "meter_power_kwh": result.meter_power_kwh,
        "measure_power_w": result.measure_power_w,
        "consumption_power_w": result.consumption_power_w,
        "grid_power_w": result.grid_power_w,
        "capabilities": dict(capabilities or {}),
    }


def emit_json(result: PollResult, **kwargs) -> None:
    print(json.dumps(result_to_dict(result, **kwargs), indent=2))


def format_human(result: PollResult, *, serial: str | None = None) -> str:
    label = f"[{serial}]" if serial else "[envoy]"
    if not result.available:
        return f"{label} UNAVAILABLE: {result.error_message or 'unknown error'}"

    mode = "metered" if result.is_metered else "unmetered"
    line = (
        f"{label} production={_fmt(result.measure_power_w, 'W')}  "
        f"consumption={_fmt(result.consumption_power_w, 'W')}  "
        f"grid={_fmt(result.grid_power_w, 'W')}  "
        f"energy={_fmt(result.meter_power_kwh, 'kWh', 2)}  ({mode})"
    )
    if result.join_skipped:
        line += "  [meter readings incomplete; previous values kept]"
    return line


def emit_human(result: PollResult, *, serial: str | None = None) -> None:
    print(format_human(result, serial=serial))
