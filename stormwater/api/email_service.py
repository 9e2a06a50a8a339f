from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from .service import InspectionRecord

logger = logging.getLogger(__name__)


@dataclass
class SendGridEmailConfig:
    api_key: str
    sender: str
    recipients: Sequence[str]
    environment_label: str | None = None
    ui_base_url: str | None = None
    include_model_results: bool = True


@dataclass
class SendGridReviewNotifier:
    """Email reviewers when an inspection cannot be filed automatically."""

    config: SendGridEmailConfig
    client: Any = field(default=None)

    def __post_init__(self) -> None:
        if self.client is None:
            self.client = SendGridAPIClient(self.config.api_key)

    def notify_manual_review(self, record: InspectionRecord) -> None:
        if not self.config.recipients:
            logger.debug("No reviewer recipients configured; skipping email")
            return
        message = self._build_message(record)
        self.client.send(message)
        logger.info(
            "Review notification sent inspection=%s recipients=%d",
            record.inspection_id,
            len(self.config.recipients),
        )

    def _build_message(self, record: InspectionRecord) -> Mail:
        subject = self._render_subject(record)
        return Mail(
            from_email=self.config.sender,
            to_emails=list(self.config.recipients),
            subject=subject,
            plain_text_content=self._render_plain(record),
            html_content=self._render_html(subject, record),
        )

    def _render_subject(self, record: InspectionRecord) -> str:
        prefix = f"[{self.config.environment_label}] " if self.config.environment_label else ""
        return f"{prefix}Manual review required for site {record.site_id}"

    def _inspection_url(self, record: InspectionRecord) -> str | None:
        if not self.config.ui_base_url:
            return None
        return f"{self.config.ui_base_url.rstrip('/')}/v1/inspections/{record.inspection_id}"

    def _render_plain(self, record: InspectionRecord) -> str:
        result = record.result
        lines = [
            f"Inspection: {record.inspection_id}",
            f"Site: {record.site_id}",
            f"Inspector: {record.inspector_id}",
            f"Analyzed at: {record.analyzed_at.isoformat()}",
            f"Reason: {result.review_reason or 'unspecified'}",
            f"Consensus: {result.consensus_level} (confidence {result.confidence:.2f})",
            f"Models responding: {result.model_count}",
        ]
        for detection in result.detections:
            lines.append(
                f"- {detection.defect_class} severity={detection.severity} "
                f"confidence={detection.confidence:.2f}"
            )
        if self.config.include_model_results:
            for model_result in result.model_results:
                lines.append(
                    f"* {model_result.model_id}: compliant={model_result.is_compliant} "
                    f"confidence={model_result.confidence:.2f} "
                    f"detections={len(model_result.detections)}"
                )
        url = self._inspection_url(record)
        if url:
            lines.append(f"Details: {url}")
        return "\n".join(lines)

    def _render_html(self, subject: str, record: InspectionRecord) -> str:
        result = record.result
        rows = "".join(
            "<tr><td>{}</td><td>{}</td><td>{:.2f}</td><td>{}</td></tr>".format(
                html.escape(d.defect_class),
                html.escape(d.severity),
                d.confidence,
                html.escape(d.recommended_action),
            )
            for d in result.detections
        )
        detections_html = (
            "<table><tr><th>Defect</th><th>Severity</th><th>Confidence</th>"
            f"<th>Recommended action</th></tr>{rows}</table>"
            if rows
            else "<p>No consolidated detections.</p>"
        )
        models_html = ""
        if self.config.include_model_results and result.model_results:
            items = "".join(
                "<li>{}: compliant={} confidence={:.2f}</li>".format(
                    html.escape(r.model_id), r.is_compliant, r.confidence
                )
                for r in result.model_results
            )
            models_html = f"<h3>Model results</h3><ul>{items}</ul>"
        url = self._inspection_url(record)
        link_html = f'<p><a href="{html.escape(url)}">Open inspection</a></p>' if url else ""
        return (
            f"<h2>{html.escape(subject)}</h2>"
            f"<p>Reason: {html.escape(result.review_reason or 'unspecified')}</p>"
            f"<p>Site {html.escape(record.site_id)}, inspector "
            f"{html.escape(record.inspector_id)}, consensus {html.escape(result.consensus_level)}</p>"
            f"{detections_html}{models_html}{link_html}"
        )


def create_sendgrid_notifier(
    api_key: str,
    sender: str,
    recipients: Sequence[str],
    environment_label: str | None = None,
    ui_base_url: str | None = None,
    include_model_results: bool = True,
) -> SendGridReviewNotifier:
    config = SendGridEmailConfig(
        api_key=api_key,
        sender=sender,
        recipients=list(recipients),
        environment_label=environment_label,
        ui_base_url=ui_base_url,
        include_model_results=include_model_results,
    )
    return SendGridReviewNotifier(config=config)


__all__ = ["SendGridEmailConfig", "SendGridReviewNotifier", "create_sendgrid_notifier"]
