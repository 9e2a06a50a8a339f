from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from .config_loader import AppConfig, load_config
from .email_service import create_sendgrid_notifier
from .notification_settings import load_notification_settings
from .server import create_app
from .service import ReviewNotifier
from ..ai import (
    AnthropicVisionAdapter,
    GeminiVisionAdapter,
    OpenAIVisionAdapter,
    ScenarioVisionAdapter,
    VisionAdapter,
    VisionEnsembleService,
)

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the stormwater inspection API server",
        epilog="Configuration is loaded from config/stormwater.json. "
               "CLI arguments override config file settings.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config/stormwater.json",
        help="Path to JSON configuration file (default: config/stormwater.json)",
    )
    parser.add_argument("--host", type=str, default=None, help="Override server host")
    parser.add_argument("--port", type=int, default=None, help="Override server port")
    return parser


def build_adapters(cfg: AppConfig) -> list[VisionAdapter]:
    """Instantiate the configured vision backends.

    Remote backends whose API key is missing are still constructed; they
    report themselves unavailable and the ensemble skips them.
    """
    adapters: list[VisionAdapter] = []
    factories = (
        ("openai", cfg.vision.openai, OpenAIVisionAdapter),
        ("anthropic", cfg.vision.anthropic, AnthropicVisionAdapter),
        ("gemini", cfg.vision.gemini, GeminiVisionAdapter),
    )
    for name, settings, factory in factories:
        if not settings.enabled:
            continue
        key = os.environ.get(settings.api_key_env, "") if settings.api_key_env else ""
        if not key:
            logger.warning(
                "Environment variable %s is not set; %s backend will be unavailable",
                settings.api_key_env or "<unset>",
                name,
            )
        adapters.append(
            factory(
                api_key=key,
                model=settings.model,
                base_url=settings.base_url,
                timeout=settings.timeout,
                model_id=settings.model_id or settings.model,
            )
        )
    for index, scenario in enumerate(cfg.vision.mock_scenarios, start=1):
        adapters.append(
            ScenarioVisionAdapter(model_id=f"scenario-{index}-{scenario}", scenario=scenario)
        )
    return adapters


def build_notifier(cfg: AppConfig) -> ReviewNotifier | None:
    sendgrid_key = os.environ.get(cfg.email.sendgrid_api_key_env)
    sender_email = os.environ.get(cfg.email.review_from_email_env)
    settings = load_notification_settings(Path(cfg.paths.notification_config)).review_email

    if not settings.enabled:
        return None
    if not (sendgrid_key and sender_email):
        missing = [
            name
            for name, value in [
                (cfg.email.sendgrid_api_key_env, sendgrid_key),
                (cfg.email.review_from_email_env, sender_email),
            ]
            if not value
        ]
        logger.warning(
            "Review emails enabled in %s but %s missing; notifications disabled.",
            cfg.paths.notification_config,
            ", ".join(missing),
        )
        return None
    try:
        notifier = create_sendgrid_notifier(
            api_key=sendgrid_key,
            sender=sender_email,
            recipients=settings.recipients,
            environment_label=os.environ.get(cfg.email.environment_label_env) or None,
            ui_base_url=os.environ.get(cfg.email.ui_base_url_env) or None,
            include_model_results=settings.include_model_results,
        )
    except Exception as exc:
        logger.error("Failed to initialise SendGrid client: %s", exc)
        return None
    logger.info("Review email notifications enabled recipients=%d", len(settings.recipients))
    return notifier


def main() -> None:
    load_dotenv()
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s"
        )
    args = build_parser().parse_args()

    try:
        cfg = load_config(args.config if Path(args.config).exists() else None)
    except Exception as exc:
        logger.error("Failed to load configuration: %s", exc)
        sys.exit(1)

    if args.host:
        cfg.server.host = args.host
    if args.port:
        cfg.server.port = args.port

    try:
        adapters = build_adapters(cfg)
    except ValueError as exc:
        logger.error("Invalid vision backend configuration: %s", exc)
        sys.exit(1)
    if not adapters:
        logger.error("No vision backends enabled; enable at least one in the config")
        sys.exit(1)

    try:
        ensemble = VisionEnsembleService(
            adapters,
            min_models_required=cfg.ensemble.min_models_required,
            adapter_timeout=cfg.ensemble.adapter_timeout,
            availability_timeout=cfg.ensemble.availability_timeout,
        )
    except ValueError as exc:
        logger.error("Invalid ensemble configuration: %s", exc)
        sys.exit(1)

    logger.info(
        "Server configuration %s:%d models=%s",
        cfg.server.host,
        cfg.server.port,
        ",".join(ensemble.model_ids),
    )

    app = create_app(ensemble=ensemble, notifier=build_notifier(cfg))
    uvicorn.run(app, host=cfg.server.host, port=cfg.server.port, log_level="info")


if __name__ == "__main__":
    main()
