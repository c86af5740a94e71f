# envoy_monitor/tests/test_reconciler.py

import pytest

from envoy_monitor.errors import AuthError, DataJoinError, NetworkError
from envoy_monitor.models.telemetry import (
    MeterDescriptor,
    MeterReading,
    MeteringMode,
    ProductionReport,
)
from envoy_monitor.services.envoy_client import EnvoyClient
from envoy_monitor.services.reconciler import (
    TelemetryReconciler,
    is_metered,
    join_meter_power,
    self_consumption,
)
from envoy_monitor.tests.fake_gateway import (
    ADDRESS,
    METERED_METERS,
    METERS_URL,
    SERIAL,
    FakeResponse,
    FakeSession,
    meter_readings,
    production_payload,
)
from envoy_monitor.logging import get_logger


LOG = get_logger("reconciler-test")


class FakeClient:
    def __init__(self, meters=None, production=None, readings=None, errors=None):
        self.meters = MeterDescriptor.list_from_payload(meters if meters is not None else METERED_METERS)
        self.production = ProductionReport.from_payload(production or production_payload())
        self.readings = MeterReading.list_from_payload(readings if readings is not None else meter_readings())
        self.errors = errors or {}
        self.calls = []

    def _maybe_raise(self, name):
        self.calls.append(name)
        if name in self.errors:
            raise self.errors[name]

    def get_meters(self):
        self._maybe_raise("meters")
        return self.meters

    def get_production_data(self):
        self._maybe_raise("production")
        return self.production

    def get_meter_readings(self):
        self._maybe_raise("readings")
        return self.readings


def _meters(*types):
    return [MeterDescriptor.from_payload({"eid": i, "measurementType": t}) for i, t in enumerate(types)]


def test_is_metered_for_production_and_net_consumption():
    assert is_metered(_meters("production", "net-consumption")) is True


@pytest.mark.parametrize(
    "types",
    [
        (),
        ("other",),
        ("production", "total-consumption"),
    ],
)
def test_is_metered_false_cases(types):
    assert is_metered(_meters(*types)) is False


def test_self_consumption_adds_signed_grid_power():
    assert self_consumption(500, -120) == 380
    assert self_consumption(500, 250) == 750


def test_default_mode_ignores_meters_and_uses_inverter_report():
    client = FakeClient(production=production_payload(w_now=842))
    reconciler = TelemetryReconciler(client, LOG)

    result = reconciler.poll()

    assert result.available is True
    assert result.measure_power_w == 842
    assert result.consumption_power_w == 0
    assert result.grid_power_w == 0
    assert result.meter_power_kwh == 0
    assert result.is_metered is False
    assert client.calls == ["meters", "production"]


def test_auto_mode_follows_meter_list():
    client = FakeClient(meters=[{"eid": 1, "measurementType": "other"}])
    reconciler = TelemetryReconciler(client, LOG, metering_mode=MeteringMode.AUTO)

    result = reconciler.poll()
    assert result.is_metered is False
    assert "readings" not in client.calls

    client = FakeClient()
    reconciler = TelemetryReconciler(client, LOG, metering_mode=MeteringMode.AUTO)
    result = reconciler.poll()
    assert result.is_metered is True
    assert client.calls == ["meters", "production", "readings"]


def test_metered_poll_reports_meter_values():
    client = FakeClient(readings=meter_readings(production_w=500, grid_w=-120))
    reconciler = TelemetryReconciler(client, LOG, metering_mode=MeteringMode.FORCE_METERED)

    result = reconciler.poll()

    assert result.available is True
    assert result.measure_power_w == 500
    assert result.consumption_power_w == 380
    assert result.grid_power_w == -120
    assert result.join_skipped is False


def test_zero_meter_power_is_a_valid_reading():
    client = FakeClient(readings=meter_readings(production_w=0, grid_w=310))
    reconciler = TelemetryReconciler(client, LOG, metering_mode=MeteringMode.FORCE_METERED)

    result = reconciler.poll()

    assert result.measure_power_w == 0
    assert result.consumption_power_w == 310
    assert result.join_skipped is False


def test_missing_join_keeps_previous_readings():
    client = FakeClient(readings=meter_readings(production_w=500, grid_w=-120))
    reconciler = TelemetryReconciler(client, LOG, metering_mode=MeteringMode.FORCE_METERED)
    reconciler.poll()

    client.readings = [MeterReading(eid=704643584, active_power_w=90.0)]
    result = reconciler.poll()

    assert result.available is True
    assert result.error_message is None
    assert result.join_skipped is True
    assert result.measure_power_w == 500
    assert result.consumption_power_w == 380
    assert result.grid_power_w == -120


def test_missing_join_on_first_poll_leaves_readings_unset():
    client = FakeClient(readings=[])
    reconciler = TelemetryReconciler(client, LOG, metering_mode=MeteringMode.FORCE_METERED)

    result = reconciler.poll()

    assert result.available is True
    assert result.join_skipped is True
    assert result.measure_power_w is None
    assert result.meter_power_kwh == 0


def test_join_meter_power_names_missing_meters():
    meters = MeterDescriptor.list_from_payload(METERED_METERS)
    with pytest.raises(DataJoinError) as excinfo:
        join_meter_power(meters, [])
    assert "production" in str(excinfo.value)
    assert "net-consumption" in str(excinfo.value)


@pytest.mark.parametrize("failing", ["meters", "production", "readings"])
def test_client_failure_marks_poll_unavailable(failing):
    client = FakeClient(errors={failing: AuthError("Enphase said no")})
    reconciler = TelemetryReconciler(client, LOG, metering_mode=MeteringMode.FORCE_METERED)

    result = reconciler.poll()

    assert result.available is False
    assert result.error_message == "Enphase said no"
    assert result.measure_power_w is None


def test_daily_energy_reported_when_enabled():
    client = FakeClient(production=production_payload(w_now=100, wh_today=5250))
    reconciler = TelemetryReconciler(client, LOG, report_daily_energy=True)

    assert reconciler.poll().meter_power_kwh == pytest.approx(5.25)


def test_network_failure_on_meter_list_through_real_client():
    session = FakeSession()
    session.add("GET", METERS_URL, FakeResponse(500))
    client = EnvoyClient(ADDRESS, SERIAL, "owner@example.com", "pw", LOG, session=session)
    reconciler = TelemetryReconciler(client, LOG)

    result = reconciler.poll()

    assert result.available is False
    with pytest.raises(NetworkError) as excinfo:
        client.get_meters()
    assert result.error_message == str(excinfo.value)


def test_malformed_production_report_fails_poll():
    client = FakeClient()
    reconciler = TelemetryReconciler(client, LOG)
    client.get_production_data = lambda: ProductionReport.from_payload({"production": [{"type": "inverters"}]})

    result = reconciler.poll()

    assert result.available is False
    assert "wNow" in result.error_message


def test_later_production_entries_may_omit_power():
    payload = {
        "production": [
            {"type": "inverters", "activeCount": 12, "wNow": 842},
            {"type": "eim", "activeCount": 0},
        ]
    }
    client = FakeClient(production=payload)
    reconciler = TelemetryReconciler(client, LOG)

    result = reconciler.poll()

    assert result.available is True
    assert result.measure_power_w == 842
    assert client.production.production[1].w_now is None
    assert client.production.production[1].kind == "eim"
