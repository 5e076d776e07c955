"""Entry point for running the service as a module."""

import argparse
import os
import sys
from typing import Optional

import uvicorn

from billing_sync.config import Config, ConfigurationError


def check_config(config_path: str, require_secrets: bool = False) -> int:
    """Load settings once and report what the service would run with.

    Returns:
        0 when the settings load (and secrets are present if required), 2 otherwise
    """
    try:
        config = Config(config_path)
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    provider = config.provider
    print(f"Config: {config.config_path}")
    print(f"Stripe API key: {'set' if provider.api_key else 'missing'}")
    print(f"Webhook secret: {'set' if provider.webhook_secret else 'missing'}")
    print(f"Provider timeout: {provider.timeout_seconds}s")
    print(f"Webhook dedup window: {config.webhook.dedup_window_seconds}s")
    print(f"Reconcile freshness: {config.reconciler.freshness_seconds}s")
    print(f"Lookup cache TTL: {config.cache.ttl_seconds}s")

    if require_secrets and not (provider.api_key and provider.webhook_secret):
        print("STRIPE_SECRET_KEY and STRIPE_WEBHOOK_SECRET must both be set", file=sys.stderr)
        return 2
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="billing-sync - keeps subscription access records in line with Stripe"
    )
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"), help="Host to bind to (default: 0.0.0.0)")
    parser.add_argument(
        "--port", type=int, default=int(os.getenv("PORT", "8080")), help="Port to bind to (default: 8080)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        choices=["json", "console"],
        default=os.getenv("LOG_FORMAT", "json"),
        help="Log output format (default: json)",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "config/settings.yaml"),
        help="Path to settings.yaml (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate settings and Stripe secrets, print a summary and exit",
    )
    parser.add_argument(
        "--allow-missing-secrets",
        action="store_true",
        default=os.getenv("ALLOW_MISSING_SECRETS", "false").lower() == "true",
        help="Start even if STRIPE_SECRET_KEY or STRIPE_WEBHOOK_SECRET is unset",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("RELOAD", "false").lower() == "true",
        help="Enable auto-reload for development (default: false)",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for billing-sync."""
    args = build_parser().parse_args(argv)

    status = check_config(args.config, require_secrets=not args.allow_missing_secrets)
    if args.check_config or status != 0:
        sys.exit(status)

    os.environ["LOG_LEVEL"] = args.log_level
    os.environ["LOG_FORMAT"] = args.log_format
    os.environ["CONFIG_PATH"] = args.config

    try:
        uvicorn.run(
            "billing_sync.main:app",
            host=args.host,
            port=args.port,
            log_level=args.log_level.lower(),
            reload=args.reload,
            access_log=False,  # RequestLoggingMiddleware logs every request
        )
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
