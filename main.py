"""
IPSSL client — keeps a ZeroSSL certificate for an IP address valid on disk.

Usage:
  python main.py           # Run as a daemon (check now, then every RENEWAL_INTERVAL)
  python main.py --once    # Run one check / renewal and exit
"""
from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

import structlog

log = logging.getLogger(__name__)


# ── Logging setup ─────────────────────────────────────────────────────────────


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Route stdlib logging and structlog through one renderer on stdout."""
    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer()
    )
    shared = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    structlog.configure(
        processors=[
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level)
        ),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)


# ── Runner ────────────────────────────────────────────────────────────────────


def build_scheduler(settings, cancel_event: threading.Event):
    from authority.issuer import make_issuer
    from renewal.reload import make_reloader
    from renewal.scheduler import RenewalScheduler
    from renewal.store import CertificateStore

    return RenewalScheduler(
        settings,
        issuer=make_issuer(settings, cancel_event=cancel_event),
        store=CertificateStore(settings.IPSSL_SSL_DIR),
        reloader=make_reloader(settings),
        cancel_event=cancel_event,
    )


def install_signal_handlers(cancel_event: threading.Event) -> None:
    def _handle(signum: int, _frame: object) -> None:
        structlog.get_logger().info(
            "Received shutdown signal, stopping...", signal=signal.Signals(signum).name
        )
        cancel_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Obtain and renew a ZeroSSL certificate for an IP address",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one check / renewal and exit (non-zero status on failure)",
    )
    args = parser.parse_args(argv)

    from config import load_settings
    from errors import ConfigError

    try:
        settings = load_settings()
    except ConfigError as exc:
        configure_logging()
        log.error("Failed to load configuration: %s", exc)
        return 1

    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    cancel_event = threading.Event()
    try:
        scheduler = build_scheduler(settings, cancel_event)
    except Exception as exc:
        log.error("Failed to create IPSSL client: %s", exc)
        return 1

    install_signal_handlers(cancel_event)

    if args.once:
        result = scheduler.run_once()
        for warning in result.warnings:
            log.warning("Completed with warning: %s", warning)
        return 0 if result.ok else 1

    scheduler.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
