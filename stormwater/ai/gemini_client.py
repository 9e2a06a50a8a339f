from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import requests

from .parsing import parse_model_output
from .types import ModelResult, VisionAdapter


@dataclass
class GeminiVisionAdapter(VisionAdapter):
    """Detect BMP defects by delegating to the Google Gemini multimodal API."""

    api_key: str
    model: str = "models/gemini-1.5-pro"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    timeout: float = 30.0
    model_id: str = "gemini-1.5-pro"

    def is_available(self) -> bool:
        return bool(self.api_key)

    def classify_image(self, image_base64: str, prompt: str) -> ModelResult:
        if not self.api_key:
            raise RuntimeError("Gemini API key is required to classify images")

        started = time.perf_counter()
        payload = self._build_payload(image_base64, prompt)
        url = f"{self.base_url.rstrip('/')}/{self.model}:generateContent"
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
                params={"key": self.api_key},
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except Exception as exc:  # pragma: no cover - surfaced to caller
            raise RuntimeError(f"Failed to reach Gemini API: {exc}") from exc

    def _build_payload(self, image_base64: str, prompt: str) -> dict[str, Any]:
        return {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": prompt},
                        {
                            "inline_data": {
                                "mime_type": "image/jpeg",
                                "data": image_base64,
                            }
                        },
                    ],
                }
            ],
            "generationConfig": {
                "temperature": 0.0,
                "responseMimeType": "application/json",
            },
        }

    def _extract_message_content(self, data: dict[str, Any]) -> str:
        try:
            parts = data["candidates"][0]["content"]["parts"]
            return "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError) as exc:
            raise RuntimeError("Unexpected response format from Gemini API") from exc


__all__ = ["GeminiVisionAdapter"]
