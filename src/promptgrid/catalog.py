# Copyright (c) Syntropy Systems
"""Known models, provider routing and per-token pricing."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from promptgrid.models.base import FrozenModel

if TYPE_CHECKING:
    from collections.abc import Iterable

    from promptgrid.models.result import TokenUsage

logger = logging.getLogger(__name__)

DEFAULT_MODEL_COUNT = 2
CHEAP_PRICE_LIMIT = 0.002
MID_PRICE_LIMIT = 0.02


class ModelInfo(FrozenModel):
    """A selectable model and its list price in USD per 1K tokens."""

    id: str
    name: str
    provider: str
    input_price_per_1k_tokens: Optional[float] = None
    output_price_per_1k_tokens: Optional[float] = None

    @property
    def average_price(self) -> float:
        """Mean of input and output price, 0 when unknown."""
        return (
            (self.input_price_per_1k_tokens or 0.0)
            + (self.output_price_per_1k_tokens or 0.0)
        ) / 2

    @property
    def price_tier(self) -> str:
        """Coarse price bucket: ``$``, ``$$``, ``$$$`` or ``unknown``."""
        average = self.average_price
        if average == 0:
            return "unknown"
        if average < CHEAP_PRICE_LIMIT:
            return "$"
        if average <= MID_PRICE_LIMIT:
            return "$$"
        return "$$$"


AVAILABLE_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo(id="gpt-4o", name="GPT-4o", provider="OpenAI",
              input_price_per_1k_tokens=0.0025, output_price_per_1k_tokens=0.01),
    ModelInfo(id="gpt-4o-mini", name="GPT-4o Mini", provider="OpenAI",
              input_price_per_1k_tokens=0.00015, output_price_per_1k_tokens=0.0006),
    ModelInfo(id="gpt-4-turbo", name="GPT-4 Turbo", provider="OpenAI",
              input_price_per_1k_tokens=0.01, output_price_per_1k_tokens=0.03),
    ModelInfo(id="gpt-3.5-turbo", name="GPT-3.5 Turbo", provider="OpenAI",
              input_price_per_1k_tokens=0.0005, output_price_per_1k_tokens=0.0015),
    ModelInfo(id="o1-preview", name="o1 Preview", provider="OpenAI",
              input_price_per_1k_tokens=0.015, output_price_per_1k_tokens=0.06),
    ModelInfo(id="o1-mini", name="o1 Mini", provider="OpenAI",
              input_price_per_1k_tokens=0.003, output_price_per_1k_tokens=0.012),
    ModelInfo(id="claude-3-5-sonnet-20241022", name="Claude 3.5 Sonnet", provider="Anthropic",
              input_price_per_1k_tokens=0.003, output_price_per_1k_tokens=0.015),
    ModelInfo(id="claude-3-5-haiku-20241022", name="Claude 3.5 Haiku", provider="Anthropic",
              input_price_per_1k_tokens=0.0008, output_price_per_1k_tokens=0.004),
    ModelInfo(id="claude-3-opus-20240229", name="Claude 3 Opus", provider="Anthropic",
              input_price_per_1k_tokens=0.015, output_price_per_1k_tokens=0.075),
    ModelInfo(id="claude-3-haiku-20240307", name="Claude 3 Haiku", provider="Anthropic",
              input_price_per_1k_tokens=0.00025, output_price_per_1k_tokens=0.00125),
    ModelInfo(id="grok-3", name="Grok 3", provider="xAI",
              input_price_per_1k_tokens=0.003, output_price_per_1k_tokens=0.015),
    ModelInfo(id="grok-3-mini", name="Grok 3 Mini", provider="xAI",
              input_price_per_1k_tokens=0.0003, output_price_per_1k_tokens=0.0005),
    ModelInfo(id="grok-beta", name="Grok Beta", provider="xAI"),
    ModelInfo(id="gemini-2.5-pro", name="Gemini 2.5 Pro", provider="Google",
              input_price_per_1k_tokens=0.00125, output_price_per_1k_tokens=0.01),
    ModelInfo(id="gemini-2.5-flash", name="Gemini 2.5 Flash", provider="Google",
              input_price_per_1k_tokens=0.0003, output_price_per_1k_tokens=0.0025),
    ModelInfo(id="gemini-2.0-flash", name="Gemini 2.0 Flash", provider="Google",
              input_price_per_1k_tokens=0.0001, output_price_per_1k_tokens=0.0004),
    ModelInfo(id="gemini-1.5-pro", name="Gemini 1.5 Pro", provider="Google",
              input_price_per_1k_tokens=0.00125, output_price_per_1k_tokens=0.005),
    ModelInfo(id="gemini-1.5-flash", name="Gemini 1.5 Flash", provider="Google",
              input_price_per_1k_tokens=0.000075, output_price_per_1k_tokens=0.0003),
    ModelInfo(id="mistral-large-latest", name="Mistral Large", provider="Mistral"),
    ModelInfo(id="llama-3.1-8b-instant", name="Llama 3.1 8B", provider="Groq"),
    ModelInfo(id="deepseek-chat", name="DeepSeek Chat", provider="DeepSeek"),
    ModelInfo(id="meta-llama/Meta-Llama-3-70B-Instruct", name="Llama 3 70B Instruct",
              provider="Together.ai"),
    ModelInfo(id="llama-3.1-sonar-small-128k-online", name="Sonar Small Online",
              provider="Perplexity"),
)


def provider_for_model(model_id: str) -> str:
    """Map a model id to its provider key by naming convention.

    Unknown ids fall back to ``openai``.
    """
    if model_id.startswith(("gpt-", "o1-", "o3-", "o4-")) or model_id in ("o1", "o3", "o4"):
        return "openai"
    if model_id.startswith("claude-"):
        return "anthropic"
    if model_id.startswith("grok-"):
        return "xai"
    if model_id.startswith("gemini-"):
        return "google"
    if model_id.startswith(("mistral-", "open-mistral-", "open-mixtral-")):
        return "mistral"
    if "sonar" in model_id:
        return "perplexity"
    if "/" not in model_id and ("llama" in model_id or "mixtral" in model_id):
        return "groq"
    if "gemma" in model_id:
        return "groq"
    if model_id.startswith("deepseek-"):
        return "deepseek"
    if "/" in model_id:
        return "togetherai"

    logger.warning("Unknown model provider for %s, defaulting to OpenAI", model_id)
    return "openai"


def estimate_cost(usage: TokenUsage, model: ModelInfo) -> Optional[float]:
    """Derive the USD cost of one completion, or None when unpriced."""
    if model.input_price_per_1k_tokens is None or model.output_price_per_1k_tokens is None:
        return None
    return (
        usage.prompt_tokens / 1000 * model.input_price_per_1k_tokens
        + usage.completion_tokens / 1000 * model.output_price_per_1k_tokens
    )


class ModelCatalog:
    """Lookup over the selectable models."""

    _models: dict[str, ModelInfo]

    def __init__(self, models: Iterable[ModelInfo] = AVAILABLE_MODELS) -> None:
        self._models = {model.id: model for model in models}

    def __iter__(self):
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def get(self, model_id: str) -> Optional[ModelInfo]:
        """Return a model by id."""
        return self._models.get(model_id)

    def display_name(self, model_id: str) -> str:
        """Human-readable name, falling back to the id."""
        model = self._models.get(model_id)
        return model.name if model else model_id

    def default_models(self) -> list[str]:
        """Models preselected for a new prompt."""
        return [model.id for model in list(self._models.values())[:DEFAULT_MODEL_COUNT]]

    def price_lookup(self, model_id: str) -> Optional[ModelInfo]:
        """Return the priced entry for ``model_id`` if it has prices."""
        model = self._models.get(model_id)
        if model is None or model.input_price_per_1k_tokens is None:
            return None
        return model

    def cost_of(self, model_id: str, usage: Optional[TokenUsage]) -> Optional[float]:
        """Cost of a decoded usage record for ``model_id``."""
        if usage is None:
            return None
        model = self.price_lookup(model_id)
        return estimate_cost(usage, model) if model else None
