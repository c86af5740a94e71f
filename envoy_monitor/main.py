# envoy_monitor/main.py

from datetime import datetime, timezone
import sys
import time

from .cli import build_parser
from .config import AppConfig, Config
from .errors import EnvoyError
from .logging import ConsoleLog, StructuredLog

from .models.telemetry import PollResult
from .services.capability_store import CapabilityStore
from .services.device import EnvoyDevice
from .services.envoy_client import EnvoyClient
from .services.notifiers.healthchecks import HealthchecksNotifier
from .services.output_formatter import emit_json, emit_human


def build_device(app_cfg: AppConfig, host: CapabilityStore, log, session=None) -> EnvoyDevice:
    envoy_cfg = app_cfg.envoy
    return EnvoyDevice(
        envoy_cfg.serial,
        host,
        log.getChild("device"),
        cloud=app_cfg.cloud,
        timeout=envoy_cfg.timeout,
        metering_mode=envoy_cfg.metering_mode,
        report_daily_energy=envoy_cfg.report_daily_energy,
        session=session,
    )


def discover(device: EnvoyDevice, address: str, log) -> bool:
    try:
        device.on_discovered(address)
        return True
    except EnvoyError as exc:
        log.warning("Envoy at %s did not answer the initial probe: %s", address, exc)
        device.host.set_unavailable(str(exc))
        return False


def run_poll(
    device: EnvoyDevice,
    app_cfg: AppConfig,
    notifier: HealthchecksNotifier,
    structured_logger: StructuredLog,
    args,
    now=None,
) -> PollResult:
    now = now or datetime.now(timezone.utc)
    result = device.check_production()

    if not args.quiet:
        if args.json:
            emit_json(
                result,
                serial=app_cfg.envoy.serial,
                address=app_cfg.envoy.address,
                capabilities=device.host.values,
            )
        else:
            emit_human(result, serial=app_cfg.envoy.serial)

    notifier.report(result)

    if structured_logger.enabled:
        structured_logger.record(
            result,
            serial=app_cfg.envoy.serial,
            address=app_cfg.envoy.address,
            metering_mode=app_cfg.envoy.metering_mode,
            capabilities=device.host.values,
            now=now,
        )
    return result


def run_watch(device, app_cfg, notifier, structured_logger, args, log, sleep=time.sleep, max_polls=None) -> None:
    interval = args.interval if getattr(args, "interval", None) else app_cfg.envoy.poll_interval
    log.info("Polling Envoy %s every %.0fs", app_cfg.envoy.serial, interval)

    polls = 0
    while max_polls is None or polls < max_polls:
        try:
            run_poll(device, app_cfg, notifier, structured_logger, args)
        except Exception:
            log.exception("Unexpected error during poll; will retry next cycle")
        polls += 1
        if max_polls is not None and polls >= max_polls:
            break
        sleep(interval)


def run_verify(app_cfg: AppConfig, log, session=None) -> bool:
    try:
        EnvoyClient.verify_credentials(
            app_cfg.envoy.username,
            app_cfg.envoy.password,
            cloud=app_cfg.cloud,
            session=session,
        )
    except EnvoyError as exc:
        log.error("Credential check failed: %s", exc)
        return False
    log.info("Enlighten credentials for %s are valid", app_cfg.envoy.username)
    return True


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    app_cfg = Config.load(args.config)
    console_logger = ConsoleLog(
        level="DEBUG" if args.debug else app_cfg.logging.console_level,
        quiet=args.quiet or app_cfg.logging.console_quiet,
        debug_modules=app_cfg.logging.debug_modules,
    )
    log = console_logger.setup()

    if args.command == "verify":
        return 0 if run_verify(app_cfg, log) else 1

    structured_logger = StructuredLog(
        app_cfg.logging.structured_path,
        app_cfg.logging.structured_enabled,
    )
    notifier = HealthchecksNotifier(app_cfg.healthchecks, log.getChild("healthchecks"))
    host = CapabilityStore(
        {"username": app_cfg.envoy.username, "password": app_cfg.envoy.password}
    )
    device = build_device(app_cfg, host, log)
    discover(device, app_cfg.envoy.address, log)

    if args.command == "poll":
        result = run_poll(device, app_cfg, notifier, structured_logger, args)
        return 0 if result.available else 1
    elif args.command == "watch":
        try:
            run_watch(device, app_cfg, notifier, structured_logger, args, log)
        except KeyboardInterrupt:
            log.info("Stopped")
        return 0
    else:
        raise ValueError(f"Unsupported command: {args.command}")


if __name__ == "__main__":
    sys.exit(main())
