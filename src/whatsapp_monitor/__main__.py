"""Command line entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path

from .app import WhatsAppMonitorApp
from .models import Settings
from .utils import SessionNoiseFilter, parse_bool


def build_settings(args: argparse.Namespace) -> Settings:
    auto_clone = args.auto_clone
    if auto_clone is None:
        auto_clone = parse_bool(os.getenv("AUTO_CLONE"), True)
    return Settings(
        host=args.host or os.getenv("HOST") or "0.0.0.0",
        port=int(args.port or os.getenv("PORT") or 3001),
        backend_url=args.backend_url or os.getenv("FLASK_API") or "http://localhost:5000",
        gateway_url=args.gateway_url or os.getenv("WA_GATEWAY_URL") or "http://localhost:8080",
        session_name=args.session_name or os.getenv("WA_SESSION_NAME") or "promo-monitor",
        auth_dir=Path(args.auth_dir or os.getenv("WA_AUTH_DIR") or "auth_info_baileys"),
        groups_file=Path(
            args.groups_file or os.getenv("MONITORED_GROUPS_FILE") or "monitored_groups.json"
        ),
        log_capacity=int(args.log_capacity or os.getenv("MESSAGE_LOG_CAPACITY") or 500),
        auto_clone=auto_clone,
    )


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Capture WhatsApp group offers and forward them for cloning"
    )
    parser.add_argument("--host", help="HTTP bind address (HOST)")
    parser.add_argument("--port", type=int, help="HTTP port (PORT), default 3001")
    parser.add_argument("--backend-url", help="Clone backend base URL (FLASK_API)")
    parser.add_argument("--gateway-url", help="WhatsApp gateway base URL (WA_GATEWAY_URL)")
    parser.add_argument("--session-name", help="Gateway session name (WA_SESSION_NAME)")
    parser.add_argument("--auth-dir", help="Credential directory (WA_AUTH_DIR)")
    parser.add_argument("--groups-file", help="Monitored groups file (MONITORED_GROUPS_FILE)")
    parser.add_argument(
        "--log-capacity", type=int, help="Captured messages kept in memory (MESSAGE_LOG_CAPACITY)"
    )
    parser.add_argument(
        "--auto-clone",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Forward captured messages to the backend automatically (AUTO_CLONE)",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    args = parser.parse_args()

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    for handler in logging.getLogger().handlers:
        handler.addFilter(SessionNoiseFilter())

    app = WhatsAppMonitorApp(build_settings(args))
    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Stopped on user request")


if __name__ == "__main__":
    main()
