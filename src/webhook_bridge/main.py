"""
Webhook Bridge entrypoint.

CLI:
  webhook-bridge run        -> subscribe and relay until SIGINT/SIGTERM
  webhook-bridge --version  -> print package version
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from importlib.metadata import PackageNotFoundError, version as pkg_version

from webhook_bridge.log_config import configure_logging

logger = logging.getLogger(__name__)


def get_version_string() -> str:
    try:
        return pkg_version("webhook-bridge")
    except PackageNotFoundError:
        return "0.0.0+dev"


def _install_signal_handlers(shutdown: threading.Event) -> None:
    def _handler(signum: int, frame) -> None:  # frame is unused, keep signature
        logger.info("Received signal %s; requesting shutdown", signum)
        shutdown.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def run_bridge() -> int:
    """
    Runtime mode: connect, subscribe, relay until shutdown.
    Returns process exit code.
    """
    from webhook_bridge.config import ConfigError, load_config
    from webhook_bridge.lifecycle import LifecycleController
    from webhook_bridge.mqtt_broker import connect_mqtt
    from webhook_bridge.relay import Relay
    from webhook_bridge.session import BrokerSession

    configure_logging()
    try:
        cfg = load_config()
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2
    configure_logging(cfg.log_level)

    logger.info("============================================================")
    logger.info("Webhook Bridge")
    logger.info("Version: %s", get_version_string())
    logger.info("Topic: %s", cfg.topic)
    logger.info(
        "Target: %s://%s:%s%s",
        cfg.target.scheme,
        cfg.target.host,
        cfg.target.port,
        cfg.target.path,
    )
    logger.info("============================================================")

    shutdown = threading.Event()
    _install_signal_handlers(shutdown)

    session = BrokerSession(cfg.topic, connect_mqtt)
    relay = Relay(cfg.target, session.send_reply, max_workers=cfg.max_workers)
    session.on_message = relay.relay

    controller = LifecycleController(session, cfg.broker, grace_s=cfg.shutdown_grace_s)
    logger.info("Bridge running (shutdown via SIGINT/SIGTERM)")
    try:
        return controller.run(shutdown)
    finally:
        relay.close()
        logger.info("Bridge stopped")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="webhook-bridge")
    p.add_argument("--version", action="version", version=get_version_string())

    sub = p.add_subparsers(dest="cmd", required=True)
    sub.add_parser("run", help="Relay broker messages to the webhook target")
    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.cmd == "run":
        raise SystemExit(run_bridge())

    raise SystemExit(2)


if __name__ == "__main__":
    main()
