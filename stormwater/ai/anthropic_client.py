from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import requests

from .parsing import parse_model_output
from .types import ModelResult, VisionAdapter


@dataclass
class AnthropicVisionAdapter(VisionAdapter):
    """Detect BMP defects with Claude through the Anthropic messages API."""

    api_key: str
    model: str = "claude-3-5-sonnet-20241022"
    base_url: str = "https://api.anthropic.com/v1"
    api_version: str = "2023-06-01"
    timeout: float = 30.0
    max_tokens: int = 1000
    model_id: str = "claude-3-5-sonnet"

    def is_available(self) -> bool:
        return bool(self.api_key)

    def classify_image(self, image_base64: str, prompt: str) -> ModelResult:
        if not self.api_key:
            raise RuntimeError("Anthropic API key is required to classify images")

        started = time.perf_counter()
        payload = self._build_payload(image_base64, prompt)
        url = f"{self.base_url.rstrip('/')}/messages"
        response_data = self._send_request(url, payload)
        message = self._extract_message_content(response_data)
        detections, is_compliant, confidence = parse_model_output(message)
        return ModelResult(
            model_id=self.model_id,
            detections=tuple(detections),
            is_compliant=is_compliant,
            confidence=confidence,
            raw_response=message,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
        )

    def _send_request(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = requests.post(
                url,
                json=payload,
                headers={
                    "x-api-key": self.api_key,
                    "anthropic-version": self.api_version,
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except Exception as exc:  # pragma: no cover - surfaced to caller
            raise RuntimeError(f"Failed to reach Anthropic API: {exc}") from exc

    def _build_payload(self, image_base64: str, prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": "image/jpeg",
                                "data": image_base64,
                            },
                        },
                        {"type": "text", "text": prompt},
                    ],
                }
            ],
        }

    def _extract_message_content(self, data: dict[str, Any]) -> str:
        try:
            blocks = data["content"]
            return "".join(
                block.get("text", "") for block in blocks if block.get("type") == "text"
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise RuntimeError("Unexpected response format from Anthropic API") from exc


__all__ = ["AnthropicVisionAdapter"]
