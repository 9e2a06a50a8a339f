from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import requests

from .parsing import parse_model_output
from .types import ModelResult, VisionAdapter


_SYSTEM_PROMPT = (
    "You are a stormwater compliance inspector reviewing construction site photos. "
    "Always answer with a single JSON object."
)


@dataclass
class OpenAIVisionAdapter(VisionAdapter):
    """Detect BMP defects with an OpenAI vision-capable chat model."""

    api_key: str
    model: str = "gpt-4o"
    base_url: str = "https://api.openai.com/v1"
    timeout: float = 30.0
    max_tokens: int = 1000
    model_id: str = "gpt-4o"

    def is_available(self) -> bool:
        return bool(self.api_key)

    def classify_image(self, image_base64: str, prompt: str) -> ModelResult:
        if not self.api_key:
            raise RuntimeError("OpenAI API key is required to classify images")

        started = time.perf_counter()
        payload = self._build_payload(image_base64, prompt)
        url = f"{self.base_url.rstrip('/')}/chat/completions"
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
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except Exception as exc:  # pragma: no cover - surfaced to caller
            raise RuntimeError(f"Failed to reach OpenAI API: {exc}") from exc

    def _build_payload(self, image_base64: str, prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": 0.0,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/jpeg;base64,{image_base64}"},
                        },
                    ],
                },
            ],
        }

    def _extract_message_content(self, data: dict[str, Any]) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise RuntimeError("Unexpected response format from OpenAI API") from exc
        if not isinstance(content, str):
            raise RuntimeError("OpenAI API returned non-text content")
        return content


__all__ = ["OpenAIVisionAdapter"]
