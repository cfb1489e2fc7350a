"""Token cost estimation for agent runs."""

from __future__ import annotations

import os
from dataclasses import dataclass

from bookmark_hoard.agent.events import TelemetrySnapshot, TokenCounts

PRICING_ENV = "BOOKMARK_HOARD_PRICING"


@dataclass(slots=True, frozen=True)
class ModelPricing:
    """Per-model pricing in USD per 1M tokens."""

    input_per_1m: float
    output_per_1m: float
    cache_read_per_1m: float = 0.0
    cache_write_per_1m: float = 0.0


BUILTIN_PRICING: dict[tuple[str, str], ModelPricing] = {
    ("claude", "sonnet"): ModelPricing(3.00, 15.00, 0.30, 3.75),
    ("claude", "haiku"): ModelPricing(0.25, 1.25, 0.025, 0.30),
    ("claude", "opus"): ModelPricing(15.00, 75.00, 1.50, 18.75),
}


@dataclass(slots=True)
class CostBreakdown:
    """Estimated USD cost per token class."""

    input: float = 0.0
    output: float = 0.0
    cache_read: float = 0.0
    cache_write: float = 0.0
    subagent: float = 0.0

    @property
    def total(self) -> float:
        return self.input + self.output + self.cache_read + self.cache_write + self.subagent


def estimate_cost(
    *,
    provider: str,
    model: str,
    tokens: TokenCounts,
    subagent_tokens: TokenCounts | None = None,
    subagent_model: str | None = None,
) -> CostBreakdown | None:
    """Estimate run cost in USD, or None when no pricing is known for the model."""

    pricing = lookup_pricing(provider=provider, model=model)
    if pricing is None:
        return None

    breakdown = CostBreakdown(
        input=_per_million(tokens.input + tokens.reasoning, pricing.input_per_1m),
        output=_per_million(tokens.output, pricing.output_per_1m),
        cache_read=_per_million(tokens.cache_read, pricing.cache_read_per_1m),
        cache_write=_per_million(tokens.cache_write, pricing.cache_write_per_1m),
    )
    if subagent_tokens is not None and subagent_tokens.total:
        sub_pricing = (
            lookup_pricing(provider=provider, model=subagent_model) if subagent_model else None
        ) or pricing
        breakdown.subagent = _per_million(
            subagent_tokens.input,
            sub_pricing.input_per_1m,
        ) + _per_million(subagent_tokens.output, sub_pricing.output_per_1m)
    return breakdown


def format_usage_lines(
    snapshot: TelemetrySnapshot,
    *,
    provider: str,
    model: str,
) -> list[str]:
    """Render token usage and cost estimate for CLI output."""

    tokens = snapshot.tokens
    cost = estimate_cost(
        provider=provider,
        model=model,
        tokens=tokens,
        subagent_tokens=snapshot.subagent_tokens,
        subagent_model=snapshot.subagent_model,
    )
    lines = [
        f"Token usage ({provider}/{model}):",
        f"  input:       {tokens.input:>12,}{_cost(cost.input if cost else None)}",
        f"  output:      {tokens.output:>12,}{_cost(cost.output if cost else None)}",
        f"  cache read:  {tokens.cache_read:>12,}{_cost(cost.cache_read if cost else None)}",
        f"  cache write: {tokens.cache_write:>12,}{_cost(cost.cache_write if cost else None)}",
    ]
    if tokens.reasoning:
        lines.append(f"  reasoning:   {tokens.reasoning:>12,}")
    sub = snapshot.subagent_tokens
    if sub.total:
        lines.append(
            f"  subagents ({snapshot.subagent_model or 'unknown'}): "
            f"{sub.input:,} in / {sub.output:,} out{_cost(cost.subagent if cost else None)}",
        )
    if cost is not None:
        lines.append(f"  estimated total: ${cost.total:.4f}")
    else:
        lines.append(f"  no pricing known; set {PRICING_ENV} to estimate cost")
    return lines


def lookup_pricing(*, provider: str, model: str) -> ModelPricing | None:
    provider_key = provider.strip().lower()
    model_key = model.strip()
    mapping = {**BUILTIN_PRICING, **_parse_pricing_mapping(os.getenv(PRICING_ENV, ""))}
    for key in ((provider_key, model_key), (provider_key, "*"), ("*", "*")):
        pricing = mapping.get(key)
        if pricing is not None:
            return pricing
    return None


def _parse_pricing_mapping(raw: str) -> dict[tuple[str, str], ModelPricing]:
    """Parse ``BOOKMARK_HOARD_PRICING``.

    Format:
    - `provider:model:input_per_1m:output_per_1m[:cache_read_per_1m:cache_write_per_1m]`
    - multiple entries separated by `,`
    - supports wildcards in provider/model (`*`)
    """

    parsed: dict[tuple[str, str], ModelPricing] = {}
    if not raw.strip():
        return parsed

    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = [part.strip() for part in value.split(":")]
        if len(parts) not in (4, 6):
            continue
        provider, model, *prices = parts
        try:
            numbers = [float(price) for price in prices]
        except ValueError:
            continue
        parsed[(provider.lower(), model)] = ModelPricing(*numbers)
    return parsed


def _per_million(count: int, price: float) -> float:
    return (count / 1_000_000) * price


def _cost(value: float | None) -> str:
    return "" if value is None else f"  ${value:.4f}"
