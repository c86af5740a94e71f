# envoy_monitor/services/device.py

from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol

import requests

from envoy_monitor.config import CloudConfig
from envoy_monitor.models.telemetry import MeteringMode, PollResult
from envoy_monitor.services.envoy_client import DEFAULT_TIMEOUT, EnvoyClient
from envoy_monitor.services.reconciler import TelemetryReconciler


CAP_METER_POWER = "meter_power"
CAP_MEASURE_POWER = "measure_power"
CAP_CONSUMPTION_POWER = "measure_power.consumption"
CAP_GRID_POWER = "measure_power.grid"

NOT_DISCOVERED_MESSAGE = "Enphase Envoy could not be discovered on your network"


class DeviceHost(Protocol):
    """What the device needs from the platform that owns it."""

    def get_settings(self) -> Mapping[str, Any]: ...

    def set_capability_value(self, name: str, value: float) -> None: ...

    def set_available(self) -> None: ...

    def set_unavailable(self, message: str) -> None: ...


class EnvoyDevice:
    """Lifecycle of one Envoy gateway as seen by its host platform."""

    def __init__(
        self,
        serial: str,
        host: DeviceHost,
        log,
        *,
        cloud: CloudConfig | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        metering_mode: MeteringMode = MeteringMode.FORCE_UNMETERED,
        report_daily_energy: bool = False,
        session: Optional[requests.Session] = None,
    ):
        self.serial = serial
        self.host = host
        self.log = log
        self.cloud = cloud or CloudConfig()
        self.timeout = timeout
        self.metering_mode = metering_mode
        self.report_daily_energy = report_daily_energy
        self.session = session or requests.Session()
        self.client: EnvoyClient | None = None
        self.reconciler: TelemetryReconciler | None = None

    # ------------------------------------------------------------------
    def _build_client(self, address: str) -> EnvoyClient:
        settings = self.host.get_settings()
        client = EnvoyClient(
            address,
            self.serial,
            settings.get("username", ""),
            settings.get("password", ""),
            self.log.getChild("client"),
            cloud=self.cloud,
            timeout=self.timeout,
            session=self.session,
        )
        self.client = client
        if self.reconciler is None:
            self.reconciler = TelemetryReconciler(
                client,
                self.log.getChild("reconciler"),
                metering_mode=self.metering_mode,
                report_daily_energy=self.report_daily_energy,
            )
        else:
            self.reconciler.client = client
        return client

    def on_discovered(self, address: str) -> None:
        """Create the client for a newly found gateway and probe it.

        A failing probe propagates; the client stays in place so the next
        scheduled poll can try again.
        """
        self.log.info("Envoy %s discovered at %s", self.serial, address)
        client = self._build_client(address)
        client.get_production_data()

    def on_address_changed(self, address: str) -> None:
        self.log.info("Envoy %s moved to %s", self.serial, address)
        self._build_client(address)

    def on_last_seen_changed(self) -> None:
        """The gateway answered discovery again; clear any earlier outage."""
        self.log.debug("Envoy %s seen again", self.serial)
        self.host.set_available()

    def on_settings(self, new_settings: Mapping[str, Any]) -> None:
        username = new_settings.get("username", "")
        password = new_settings.get("password", "")

        EnvoyClient.verify_credentials(username, password, cloud=self.cloud, session=self.session)

        if self.client is not None:
            self.client.set_credentials(username, password)
        self.host.set_available()

    # ------------------------------------------------------------------
    def check_production(self) -> PollResult:
        self.log.debug("Checking production")
        if self.client is None or self.reconciler is None:
            self.host.set_unavailable(NOT_DISCOVERED_MESSAGE)
            return PollResult.unavailable(NOT_DISCOVERED_MESSAGE)

        result = self.reconciler.poll()
        self.apply(result)
        return result

    def apply(self, result: PollResult) -> None:
        if not result.available:
            self.host.set_unavailable(result.error_message or "Unknown error")
            return

        values = (
            (CAP_METER_POWER, result.meter_power_kwh),
            (CAP_MEASURE_POWER, result.measure_power_w),
            (CAP_CONSUMPTION_POWER, result.consumption_power_w),
            (CAP_GRID_POWER, result.grid_power_w),
        )
        for name, value in values:
            if value is not None:
                self.host.set_capability_value(name, value)
        self.host.set_available()
