# envoy_monitor/services/reconciler.py

from __future__ import annotations

from typing import Iterable, Optional, Tuple

from envoy_monitor.errors import DataJoinError, EnvoyError
from envoy_monitor.models.telemetry import (
    NET_CONSUMPTION_METER,
    PRODUCTION_METER,
    MeterDescriptor,
    MeterReading,
    MeteringMode,
    PollResult,
    ProductionReport,
)


def is_metered(meters: Iterable[MeterDescriptor]) -> bool:
    """True when meters exist and every one is a production or net-consumption meter."""
    meter_list = list(meters)
    return bool(meter_list) and all(
        meter.measurement_type in (NET_CONSUMPTION_METER, PRODUCTION_METER)
        for meter in meter_list
    )


def self_consumption(production_w: float, grid_w: float) -> float:
    # Grid power is signed: negative while exporting.
    return production_w + grid_w


def _meter_power(
    measurement_type: str,
    meters: Iterable[MeterDescriptor],
    readings: Iterable[MeterReading],
) -> Optional[float]:
    eid = next((m.eid for m in meters if m.measurement_type == measurement_type), None)
    if eid is None:
        return None
    for reading in readings:
        if reading.eid == eid:
            return reading.active_power_w
    return None


def join_meter_power(
    meters: Iterable[MeterDescriptor],
    readings: Iterable[MeterReading],
) -> Tuple[float, float]:
    """Return (production_w, grid_w) by matching readings to meters on eid."""
    meter_list = list(meters)
    reading_list = list(readings)

    production_w = _meter_power(PRODUCTION_METER, meter_list, reading_list)
    grid_w = _meter_power(NET_CONSUMPTION_METER, meter_list, reading_list)

    missing = []
    if production_w is None:
        missing.append(PRODUCTION_METER)
    if grid_w is None:
        missing.append(NET_CONSUMPTION_METER)
    if missing:
        raise DataJoinError(
            "Envoy is metered but could not fetch " + " or ".join(missing) + " values from meters"
        )
    return production_w, grid_w


class TelemetryReconciler:
    """Turns one round of Envoy reads into a PollResult.

    The meter list decides whether the gateway is metered; the configured
    MeteringMode may override that decision. Unmetered gateways report the
    inverter-derived production figure only, metered gateways report
    production, self-consumption and net grid exchange from their meters.
    """

    def __init__(
        self,
        client,
        log,
        *,
        metering_mode: MeteringMode = MeteringMode.FORCE_UNMETERED,
        report_daily_energy: bool = False,
    ):
        self.client = client
        self.log = log
        self.metering_mode = metering_mode
        self.report_daily_energy = report_daily_energy
        self._last: PollResult | None = None

    # ------------------------------------------------------------------
    def resolve_metering(self, detected: bool) -> bool:
        if self.metering_mode is MeteringMode.FORCE_UNMETERED:
            return False
        if self.metering_mode is MeteringMode.FORCE_METERED:
            return True
        return detected

    def _energy_kwh(self, report: ProductionReport) -> float:
        if not self.report_daily_energy:
            return 0.0
        wh_today = report.first.wh_today
        if wh_today is None:
            self.log.debug("Production report carries no whToday figure; reporting 0 kWh")
            return 0.0
        return wh_today / 1000.0

    def _previous(self, attr: str) -> Optional[float]:
        return getattr(self._last, attr) if self._last is not None else None

    # ------------------------------------------------------------------
    def poll(self) -> PollResult:
        try:
            meters = self.client.get_meters()
            detected = is_metered(meters)
            metered = self.resolve_metering(detected)
            self.log.debug(
                "Meters: %s (detected metered=%s, mode=%s, using metered=%s)",
                [(m.eid, m.raw_type) for m in meters],
                detected,
                self.metering_mode.value,
                metered,
            )

            production = self.client.get_production_data()
            energy_kwh = self._energy_kwh(production)
            self.log.info("Current production energy is %skWh", energy_kwh)

            if not metered:
                power_w = production.first.w_now
                self.log.info("Current production power is %sW", power_w)
                result = PollResult(
                    meter_power_kwh=energy_kwh,
                    measure_power_w=power_w,
                    consumption_power_w=0.0,
                    grid_power_w=0.0,
                    available=True,
                    is_metered=False,
                )
            else:
                readings = self.client.get_meter_readings()
                result = self._metered_result(meters, readings, energy_kwh)
        except EnvoyError as exc:
            self.log.warning("Unavailable: %s", exc)
            return PollResult.unavailable(str(exc))

        self._last = result
        return result

    def _metered_result(self, meters, readings, energy_kwh: float) -> PollResult:
        try:
            production_w, grid_w = join_meter_power(meters, readings)
        except DataJoinError as exc:
            self.log.warning("Partial poll, keeping previous readings: %s", exc)
            return PollResult(
                meter_power_kwh=energy_kwh,
                measure_power_w=self._previous("measure_power_w"),
                consumption_power_w=self._previous("consumption_power_w"),
                grid_power_w=self._previous("grid_power_w"),
                available=True,
                is_metered=True,
                join_skipped=True,
            )

        consumption_w = self_consumption(production_w, grid_w)
        self.log.info(
            "Current production power is %sW (consumption %sW, grid %sW)",
            production_w,
            consumption_w,
            grid_w,
        )
        return PollResult(
            meter_power_kwh=energy_kwh,
            measure_power_w=production_w,
            consumption_power_w=consumption_w,
            grid_power_w=grid_w,
            available=True,
            is_metered=True,
        )
