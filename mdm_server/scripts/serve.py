#!/usr/bin/env python3
"""Bootstrap the MDM server and serve until interrupted."""

import argparse
import asyncio
import os
import sys
from pathlib import Path

from mdm_server.lib.config import CAConfig, ServerConfig, parse_http_addr
from mdm_server.lib.lifecycle import LifecycleCoordinator
from mdm_server.lib.logging_config import LOGGER, set_log_level
from mdm_server.lib.models import ShutdownCause
from mdm_server.lib.pipeline import run_pipeline
from mdm_server.lib.routes import build_app


def build_parser() -> argparse.ArgumentParser:
    """Flags for every startup parameter; each defaults from the environment."""
    env = os.environ.get
    parser = argparse.ArgumentParser(description="Run the MDM server")
    parser.add_argument(
        "--server-url",
        default=env("MDM_SERVER_URL", ""),
        help="public HTTPS url of your server",
    )
    parser.add_argument(
        "--apns-certificate",
        type=Path,
        default=Path(env("MDM_APNS_CERTIFICATE", "mdm.p12")),
        help="path to APNS certificate (default: mdm.p12)",
    )
    parser.add_argument(
        "--apns-password",
        default=env("MDM_APNS_PASSWORD", "secret"),
        help="password for your APNS cert file",
    )
    parser.add_argument(
        "--apns-key",
        type=Path,
        default=Path(env("MDM_APNS_KEY")) if env("MDM_APNS_KEY") else None,
        help="path to key file if using .pem push cert",
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        default=Path(env("MDM_DB_PATH", "mdm.db")),
        help="path to the storage file (default: mdm.db)",
    )
    parser.add_argument(
        "--http-addr",
        default=env("MDM_HTTP_ADDR", "0.0.0.0:8080"),
        help="listen address (default: 0.0.0.0:8080)",
    )
    parser.add_argument(
        "--scep-challenge",
        default=env("MDM_SCEP_CHALLENGE", ""),
        help="SCEP challenge password placed in the enrollment profile",
    )
    parser.add_argument(
        "--log-level",
        default=env("MDM_LOG_LEVEL", "INFO"),
        help="log level (default: INFO)",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Build the immutable server config from parsed flags.

    Raises:
        ValueError: If the listen address is malformed
    """
    host, port = parse_http_addr(args.http_addr)
    return ServerConfig(
        server_url=args.server_url,
        apns_cert_path=args.apns_certificate,
        apns_password=args.apns_password,
        apns_key_path=args.apns_key,
        db_path=args.db_path,
        http_host=host,
        http_port=port,
        scep_challenge=args.scep_challenge,
        ca=CAConfig(),
    )


def main(argv: list[str] | None = None) -> int:
    """Bootstrap every subsystem, then serve.

    Returns:
        Exit code (0 after an interrupt, 1 on startup or listener failure)
    """
    args = build_parser().parse_args(argv)
    LOGGER.info("started", extra={"component": "main"})

    try:
        set_log_level(args.log_level)
        config = config_from_args(args)
    except ValueError as e:
        LOGGER.error("Invalid configuration: %s", e, extra={"component": "main"})
        return 1

    state = run_pipeline(config)
    if not state.ok:
        LOGGER.error("Startup failed: %s", state.error, extra={"component": "main"})
        return 1

    coordinator = LifecycleCoordinator(build_app(state), config.http_host, config.http_port)
    event = asyncio.run(coordinator.run())
    LOGGER.info("terminated", extra={"component": "main", "cause": str(event)})
    return 0 if event.cause is ShutdownCause.INTERRUPT else 1


if __name__ == "__main__":
    sys.exit(main())
