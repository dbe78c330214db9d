"""Static registry of supported chat models and their limits."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from .errors import ModelNotFoundError


@dataclass(frozen=True, slots=True)
class TokenCost:
    """Price in USD per 1000 tokens."""

    prompt: float
    completion: float


@dataclass(frozen=True, slots=True)
class ModelInfo:
    """Context limit and pricing for a single model."""

    max_tokens: int
    cost_per_1k_tokens: TokenCost

    def cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        """Return the USD cost of a request with the given usage."""

        return (prompt_tokens / 1000) * self.cost_per_1k_tokens.prompt + (
            completion_tokens / 1000
        ) * self.cost_per_1k_tokens.completion


_MODELS: Mapping[str, ModelInfo] = MappingProxyType(
    {
        "gpt-3.5-turbo": ModelInfo(16_385, TokenCost(prompt=0.0005, completion=0.0015)),
        "gpt-3.5-turbo-0613": ModelInfo(4_096, TokenCost(prompt=0.0015, completion=0.002)),
        "gpt-3.5-turbo-16k": ModelInfo(16_384, TokenCost(prompt=0.003, completion=0.004)),
        "gpt-3.5-turbo-1106": ModelInfo(16_385, TokenCost(prompt=0.001, completion=0.002)),
        "gpt-4": ModelInfo(8_192, TokenCost(prompt=0.03, completion=0.06)),
        "gpt-4-0613": ModelInfo(8_192, TokenCost(prompt=0.03, completion=0.06)),
        "gpt-4-32k": ModelInfo(32_768, TokenCost(prompt=0.06, completion=0.12)),
        "gpt-4-1106-preview": ModelInfo(128_000, TokenCost(prompt=0.01, completion=0.03)),
        "gpt-4-turbo": ModelInfo(128_000, TokenCost(prompt=0.01, completion=0.03)),
        "gpt-4o": ModelInfo(128_000, TokenCost(prompt=0.005, completion=0.015)),
        "gpt-4o-mini": ModelInfo(128_000, TokenCost(prompt=0.00015, completion=0.0006)),
    }
)


def get_model_info(model: str) -> ModelInfo:
    """Return the :class:`ModelInfo` for ``model`` or raise :class:`ModelNotFoundError`."""

    try:
        return _MODELS[model]
    except KeyError:
        raise ModelNotFoundError(model=model) from None


def available_models() -> list[str]:
    return sorted(_MODELS)


__all__ = ["ModelInfo", "TokenCost", "available_models", "get_model_info"]
