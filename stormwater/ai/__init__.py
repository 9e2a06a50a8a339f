from __future__ import annotations

from .types import Detection, EnsembleResult, ModelResult, VisionAdapter

__all__ = [
    "Detection",
    "EnsembleResult",
    "ModelResult",
    "VisionAdapter",
    "VisionEnsembleService",
    "OpenAIVisionAdapter",
    "AnthropicVisionAdapter",
    "GeminiVisionAdapter",
    "ScenarioVisionAdapter",
]


def __getattr__(name: str):
    if name == "VisionEnsembleService":
        from .ensemble import VisionEnsembleService

        return VisionEnsembleService
    if name == "OpenAIVisionAdapter":
        from .openai_client import OpenAIVisionAdapter

        return OpenAIVisionAdapter
    if name == "AnthropicVisionAdapter":
        from .anthropic_client import AnthropicVisionAdapter

        return AnthropicVisionAdapter
    if name == "GeminiVisionAdapter":
        from .gemini_client import GeminiVisionAdapter

        return GeminiVisionAdapter
    if name == "ScenarioVisionAdapter":
        from .mock import ScenarioVisionAdapter

        return ScenarioVisionAdapter
    raise AttributeError(f"module 'stormwater.ai' has no attribute {name!r}")
