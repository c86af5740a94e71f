# envoy_monitor/config.py
from dataclasses import dataclass, field
from pathlib import Path
import configparser

from envoy_monitor.models.telemetry import MeteringMode


@dataclass
class EnvoyConfig:
    address: str
    serial: str
    username: str = ""
    password: str = ""
    timeout: float = 10.0
    metering_mode: MeteringMode = MeteringMode.FORCE_UNMETERED
    report_daily_energy: bool = False
    poll_interval: float = 60.0


@dataclass
class CloudConfig:
    host: str = "enphaseenergy.com"
    timeout: float = 10.0

    @property
    def login_url(self) -> str:
        return f"https://enlighten.{self.host}/login/login.json"

    @property
    def token_url(self) -> str:
        return f"https://entrez.{self.host}/tokens"


@dataclass
class HealthchecksConfig:
    ping_url: str | None = None
    enabled: bool = False


@dataclass
class LoggingConfig:
    console_level: str = "INFO"
    console_quiet: bool = False
    debug_modules: list[str] = field(default_factory=list)
    structured_enabled: bool = False
    structured_path: str | None = None


@dataclass
class AppConfig:
    envoy: EnvoyConfig
    cloud: CloudConfig
    healthchecks: HealthchecksConfig
    logging: LoggingConfig


class Config:
    def __init__(self, path: str):
        self.path = Path(path)
        self.parser = configparser.ConfigParser(inline_comment_prefixes=("#",), interpolation=None)
        read = self.parser.read(self.path)
        if not read:
            raise FileNotFoundError(f"Config file not found: {self.path}")

    @classmethod
    def load(cls, path: str) -> AppConfig:
        cfg = cls(path)

        p = cfg.parser

        def _as_bool(value: str) -> bool:
            return value.strip().lower() == "true"

        # --- Envoy ---
        if "envoy" not in p:
            raise ValueError("[envoy] section missing from config")

        envoy_sec = p["envoy"]
        for required in ("address", "serial"):
            if not envoy_sec.get(required, "").strip():
                raise ValueError(f"[envoy] {required} is required")

        envoy_kwargs = {
            "address": envoy_sec["address"].strip(),
            "serial": envoy_sec["serial"].strip(),
        }
        if "username" in envoy_sec:
            envoy_kwargs["username"] = envoy_sec["username"].strip()
        if "password" in envoy_sec:
            envoy_kwargs["password"] = envoy_sec["password"]
        if "timeout" in envoy_sec:
            envoy_kwargs["timeout"] = float(envoy_sec["timeout"])
        if "metering_mode" in envoy_sec:
            envoy_kwargs["metering_mode"] = MeteringMode.parse(envoy_sec["metering_mode"])
        if "report_daily_energy" in envoy_sec:
            envoy_kwargs["report_daily_energy"] = _as_bool(envoy_sec["report_daily_energy"])
        if "poll_interval" in envoy_sec:
            envoy_kwargs["poll_interval"] = float(envoy_sec["poll_interval"])
        envoy = EnvoyConfig(**envoy_kwargs)

        # --- Cloud ---
        cloud_kwargs = {}
        if "cloud" in p:
            cloud_sec = p["cloud"]
            if "host" in cloud_sec:
                cloud_kwargs["host"] = cloud_sec["host"].strip()
            if "timeout" in cloud_sec:
                cloud_kwargs["timeout"] = float(cloud_sec["timeout"])
        cloud = CloudConfig(**cloud_kwargs)

        # --- Healthchecks ---
        healthchecks_kwargs = {}
        if "healthchecks" in p:
            hc_sec = p["healthchecks"]
            if "ping_url" in hc_sec:
                healthchecks_kwargs["ping_url"] = hc_sec["ping_url"]
            if "enabled" in hc_sec:
                healthchecks_kwargs["enabled"] = _as_bool(hc_sec["enabled"])
        healthchecks = HealthchecksConfig(**healthchecks_kwargs)

        logging_kwargs = {}
        if "logging" in p:
            logging_sec = p["logging"]
            if "console_level" in logging_sec:
                logging_kwargs["console_level"] = logging_sec["console_level"]
            if "console_quiet" in logging_sec:
                logging_kwargs["console_quiet"] = _as_bool(logging_sec["console_quiet"])
            if "debug_modules" in logging_sec:
                raw = logging_sec["debug_modules"]
                logging_kwargs["debug_modules"] = [x.strip() for x in raw.split(",") if x.strip()]
            if "structured_enabled" in logging_sec:
                logging_kwargs["structured_enabled"] = _as_bool(logging_sec["structured_enabled"])
            if "structured_path" in logging_sec:
                logging_kwargs["structured_path"] = logging_sec["structured_path"]
        logging_cfg = LoggingConfig(**logging_kwargs)

        return AppConfig(
            envoy=envoy,
            cloud=cloud,
            healthchecks=healthchecks,
            logging=logging_cfg,
        )
