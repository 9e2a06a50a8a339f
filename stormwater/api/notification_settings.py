from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)


@dataclass
class ReviewEmailSettings:
    enabled: bool = False
    recipients: list[str] = field(default_factory=list)
    include_model_results: bool = True

    def sanitized(self) -> "ReviewEmailSettings":
        recipients = _clean_recipients(self.recipients)
        return ReviewEmailSettings(
            enabled=self.enabled and bool(recipients),
            recipients=recipients,
            include_model_results=bool(self.include_model_results),
        )


@dataclass
class NotificationSettings:
    review_email: ReviewEmailSettings = field(default_factory=ReviewEmailSettings)

    def to_dict(self) -> dict[str, object]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, object]) -> "NotificationSettings":
        email_payload = payload.get("review_email") if isinstance(payload, dict) else None
        settings = ReviewEmailSettings()
        if isinstance(email_payload, dict):
            recipients_raw = email_payload.get("recipients", [])
            settings = ReviewEmailSettings(
                enabled=bool(email_payload.get("enabled")),
                recipients=list(recipients_raw) if isinstance(recipients_raw, list) else [],
                include_model_results=bool(email_payload.get("include_model_results", True)),
            )
        return cls(review_email=settings.sanitized())

    def sanitized(self) -> "NotificationSettings":
        return NotificationSettings(review_email=self.review_email.sanitized())


def _clean_recipients(recipients: Iterable[object]) -> list[str]:
    seen: set[str] = set()
    cleaned: list[str] = []
    for entry in recipients:
        if entry is None:
            continue
        value = str(entry).strip()
        if not value or "@" not in value:
            continue
        lower = value.lower()
        if lower in seen:
            continue
        seen.add(lower)
        cleaned.append(value)
    return cleaned


def load_notification_settings(path: Path | None) -> NotificationSettings:
    if path is None or not path.exists():
        return NotificationSettings()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Failed to load notification settings from %s: %s", path, exc)
        return NotificationSettings()
    return NotificationSettings.from_dict(data).sanitized()


def save_notification_settings(path: Path, settings: NotificationSettings) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    serialized = settings.sanitized().to_dict()
    path.write_text(json.dumps(serialized, indent=2, sort_keys=True), encoding="utf-8")


__all__ = [
    "NotificationSettings",
    "ReviewEmailSettings",
    "load_notification_settings",
    "save_notification_settings",
]
