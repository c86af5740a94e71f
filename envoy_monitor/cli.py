# envoy_monitor/cli.py
import argparse

def build_parser():
    parser = argparse.ArgumentParser(
        prog="envoy-monitor",
        description="Enphase Envoy telemetry poller"
    )

    parser.add_argument(
        "--config",
        default="envoy_monitor.conf",
        help="Path to configuration file"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging"
    )

    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress stdout output (cron-friendly)"
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit JSON instead of human-readable text"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    # One-shot poll
    sub.add_parser("poll", help="Poll the gateway once and print the readings")

    # Serial polling loop
    cmd_watch = sub.add_parser(
        "watch",
        help="Poll the gateway repeatedly until interrupted",
    )
    cmd_watch.add_argument(
        "--interval",
        type=float,
        help="Override [envoy] poll_interval (seconds)",
    )

    # Credential check
    sub.add_parser(
        "verify",
        help="Check the configured Enlighten username/password without contacting the gateway",
    )

    return parser
