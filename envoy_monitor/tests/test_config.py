import pytest

from envoy_monitor.config import Config
from envoy_monitor.models.telemetry import MeteringMode

CONF = """
[envoy]
address = 192.168.1.50
serial = 122233445566
username = owner@example.com
password = p%ss
metering_mode = auto
report_daily_energy = true
poll_interval = 30

[cloud]
host = example.test

[healthchecks]
enabled = true
ping_url = https://hc.example/abc

[logging]
debug_modules = envoy.device, envoy.device.client
"""


def test_full_config(tmp_path):
    conf_path = tmp_path / "envoy.conf"
    conf_path.write_text(CONF)
    cfg = Config.load(str(conf_path))

    assert cfg.envoy.address == "192.168.1.50"
    assert cfg.envoy.password == "p%ss"
    assert cfg.envoy.metering_mode is MeteringMode.AUTO
    assert cfg.envoy.report_daily_energy is True
    assert cfg.envoy.poll_interval == 30.0
    assert cfg.envoy.timeout == 10.0
    assert cfg.cloud.login_url == "https://enlighten.example.test/login/login.json"
    assert cfg.cloud.token_url == "https://entrez.example.test/tokens"
    assert cfg.healthchecks.enabled is True
    assert cfg.logging.debug_modules == ["envoy.device", "envoy.device.client"]


def test_defaults(tmp_path):
    conf_path = tmp_path / "envoy.conf"
    conf_path.write_text("[envoy]\naddress = envoy.local\nserial = 1\n")
    cfg = Config.load(str(conf_path))

    assert cfg.envoy.metering_mode is MeteringMode.FORCE_UNMETERED
    assert cfg.envoy.report_daily_energy is False
    assert cfg.cloud.host == "enphaseenergy.com"
    assert cfg.healthchecks.enabled is False


@pytest.mark.parametrize(
    "body",
    [
        "[logging]\nconsole_level = INFO\n",
        "[envoy]\nserial = 1\n",
        "[envoy]\naddress = envoy.local\nserial = 1\nmetering_mode = sometimes\n",
    ],
)
def test_invalid_config(tmp_path, body):
    conf_path = tmp_path / "envoy.conf"
    conf_path.write_text(body)
    with pytest.raises(ValueError):
        Config.load(str(conf_path))


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        Config.load(str(tmp_path / "nope.conf"))
