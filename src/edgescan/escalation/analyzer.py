"""
Expensive-tier market analysis.

An Analyzer takes one market and a CostMeter and returns a structured verdict
(AnalysisResult) or None. The escalation controller wraps every call in a hard
timeout, so the meter is the only reliable record of what a cancelled call spent:
implementations must charge it as cost is incurred, not once at the end.

OpenAIAnalyzer runs a chat-completions tool loop over the read-only
AnalysisTools and asks for a JSON verdict on the final turn.
"""

import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from openai import AsyncOpenAI
from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError, field_validator

from edgescan.framework.types import Direction, Market

if TYPE_CHECKING:
    from edgescan.escalation.tools import AnalysisTools

logger = logging.getLogger(__name__)

# =============================================================================
# PRICING (USD per 1M tokens)
# =============================================================================

PRICING = {
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
    "gpt-4.1": {"input": 2.00, "output": 8.00},
}
DEFAULT_PRICING = PRICING["gpt-4o"]

INITIAL_TIER = "initial"
DEEP_TIER = "deep"


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Cost in USD of one completion. Unknown models are priced as gpt-4o."""
    pricing = PRICING.get(model, DEFAULT_PRICING)
    return (input_tokens * pricing["input"] + output_tokens * pricing["output"]) / 1_000_000


class CostMeter:
    """
    Accrues the spend of one analysis call as it happens.

    Usage (OpenAIAnalyzer):
        meter.record_usage("gpt-4o-mini", usage.prompt_tokens, usage.completion_tokens)
        if meter.exhausted:
            ...stop calling the model...
    """

    def __init__(self, budget_usd: float) -> None:
        self.budget_usd = budget_usd
        self.spent_usd = 0.0
        self.input_tokens = 0
        self.output_tokens = 0
        self.requests = 0

    @property
    def remaining_usd(self) -> float:
        return max(0.0, self.budget_usd - self.spent_usd)

    @property
    def exhausted(self) -> bool:
        return self.spent_usd >= self.budget_usd

    def charge(self, cost_usd: float) -> None:
        if cost_usd < 0:
            raise ValueError(f"cost must be non-negative, got {cost_usd}")
        self.spent_usd += cost_usd

    def record_usage(self, model: str, input_tokens: int, output_tokens: int) -> float:
        cost = estimate_cost(model, input_tokens, output_tokens)
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.requests += 1
        self.charge(cost)
        return cost


# =============================================================================
# PYDANTIC SCHEMA (structured verdict)
# =============================================================================


class AnalysisResult(BaseModel):
    """Structured verdict of one analysis tier, validated from the model's JSON."""

    model_config = ConfigDict(frozen=True)

    has_edge: StrictBool
    reasoning: str = ""
    edge_size: float = Field(default=0.0, ge=0.0, le=1.0)
    direction: Direction = Direction.YES
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    signal_type: str = "agent-research"
    supporting_data: dict[str, Any] = Field(default_factory=dict)
    fair_value_estimate: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    suggested_size_pct: Optional[float] = Field(default=None, ge=0.0)

    @field_validator("direction", mode="before")
    @classmethod
    def _upper_direction(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("reasoning", mode="before")
    @classmethod
    def _null_reasoning(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("signal_type", mode="before")
    @classmethod
    def _null_signal_type(cls, value: Any) -> Any:
        return "agent-research" if value is None else value

    @classmethod
    def from_dict(cls, raw: Any) -> "AnalysisResult":
        """
        Validate an already-decoded verdict.

        Raises:
            ValidationError: (a ValueError) if has_edge is missing or a field is invalid
        """
        return cls.model_validate(raw)


@dataclass(frozen=True)
class AnalysisRequest:
    market: Market
    tier: str  # INITIAL_TIER | DEEP_TIER
    model: str
    budget_usd: float
    max_turns: int
    tools: Optional["AnalysisTools"] = None
    initial_result: Optional[AnalysisResult] = None  # set for the deep tier

    def prompt(self, now: Optional[float] = None) -> str:
        if self.tier == DEEP_TIER:
            return build_deep_prompt(self.market, self.initial_result, now)
        return build_initial_prompt(self.market, now)


class Analyzer(ABC):
    """Expensive per-market analysis backend."""

    @abstractmethod
    async def analyze(self, request: AnalysisRequest, meter: CostMeter) -> Optional[AnalysisResult]:
        """
        Analyze one market.

        Must charge `meter` as cost is incurred. May be cancelled at any await.

        Returns:
            AnalysisResult, or None if no usable verdict was produced
        """
        pass

    def is_configured(self) -> bool:
        return True


# =============================================================================
# PROMPTS
# =============================================================================

INITIAL_SYSTEM_PROMPT = """You are a quantitative analyst specializing in prediction market edge detection. Your task is to quickly identify potential trading opportunities.

Quick scan process:
1. Check cross-platform prices using cross_platform_compare
2. Check news sentiment using topic_sentiment
3. Calculate the potential edge: your probability estimate minus the market price

Respond with a JSON object:
{"has_edge": bool, "edge_size": number 0-1, "direction": "YES"|"NO", "confidence": number 0-1,
 "signal_type": string, "reasoning": string, "supporting_data": object}"""

DEEP_SYSTEM_PROMPT = """You are an expert quantitative analyst performing deep analysis on a potential prediction market edge flagged by initial screening.

Deep analysis process:
1. VERIFY the initial price comparison data
2. RESEARCH related markets and sentiment with the available tools
3. CONSIDER time decay (days to expiry)
4. CALCULATE a refined edge (your probability estimate minus the market price) and confidence

Respond with a JSON object:
{"has_edge": bool, "edge_size": number 0-1, "direction": "YES"|"NO", "confidence": number 0-1,
 "signal_type": string, "reasoning": string, "supporting_data": object,
 "fair_value_estimate": number 0-1, "suggested_size_pct": number}"""


def build_initial_prompt(market: Market, now: Optional[float] = None) -> str:
    lines = [
        f"Analyze this {market.platform} market for trading edges:",
        "",
        f"- Title: {market.title}",
    ]
    if market.subtitle:
        lines.append(f"- Outcome: {market.subtitle}")
    lines.append(f"- Market ID: {market.id}")
    lines.append(f"- Current Price: {round(market.price * 100)} cents YES")
    lines.append(f"- Volume: ${market.volume or 0:,.0f}")
    days = days_to_expiry(market.close_time, now)
    if days is not None:
        lines.append(f"- Days to Expiry: {days:.1f}")
    return "\n".join(lines)


def build_deep_prompt(market: Market, initial: Optional[AnalysisResult], now: Optional[float] = None) -> str:
    prompt = build_initial_prompt(market, now)
    if initial is None:
        return prompt
    return (
        f"{prompt}\n\n"
        "Initial screening results:\n"
        f"- Edge: {initial.edge_size * 100:.1f}% {initial.direction.value}\n"
        f"- Signal type: {initial.signal_type}\n"
        f"- Reasoning: {initial.reasoning}"
    )


def days_to_expiry(close_time: Optional[str], now: Optional[float] = None) -> Optional[float]:
    if not close_time:
        return None
    try:
        closes_at = datetime.fromisoformat(close_time.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None
    current = time.time() if now is None else now
    return max(0.0, (closes_at - current) / 86400)


# =============================================================================
# OPENAI BACKEND
# =============================================================================


class OpenAIAnalyzer(Analyzer):
    """
    Chat-completions tool loop with a JSON verdict.

    Each turn offers the analysis tools; the last allowed turn withholds them so
    the model must answer. No further completion is requested once the meter's
    budget is used up.
    """

    def __init__(self, api_key: Optional[str] = None, client: Optional[AsyncOpenAI] = None) -> None:
        self._api_key = api_key or os.getenv("OPENAI_API_KEY")
        self._client = client

    def is_configured(self) -> bool:
        return self._client is not None or bool(self._api_key)

    async def analyze(self, request: AnalysisRequest, meter: CostMeter) -> Optional[AnalysisResult]:
        client = self._get_client()
        system_prompt = DEEP_SYSTEM_PROMPT if request.tier == DEEP_TIER else INITIAL_SYSTEM_PROMPT
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": request.prompt()},
        ]
        tool_specs = request.tools.specs() if request.tools is not None else []

        for turn in range(request.max_turns):
            if meter.exhausted:
                logger.warning(
                    "Analysis budget exhausted | market=%s | tier=%s | spent=$%.4f",
                    request.market.id,
                    request.tier,
                    meter.spent_usd,
                )
                return None

            last_turn = turn == request.max_turns - 1
            kwargs: dict[str, Any] = {
                "model": request.model,
                "messages": messages,
                "response_format": {"type": "json_object"},
            }
            if tool_specs and not last_turn:
                kwargs["tools"] = tool_specs

            response = await client.chat.completions.create(**kwargs)
            if response.usage is not None:
                meter.record_usage(
                    request.model, response.usage.prompt_tokens, response.usage.completion_tokens
                )

            message = response.choices[0].message
            if message.tool_calls and not last_turn:
                messages.append(message.model_dump(exclude_none=True))
                for call in message.tool_calls:
                    output = await request.tools.call(call.function.name, call.function.arguments)
                    messages.append({"role": "tool", "tool_call_id": call.id, "content": output})
                continue

            return self._parse_result(message.content, request)

        return None

    def _parse_result(self, content: Optional[str], request: AnalysisRequest) -> Optional[AnalysisResult]:
        try:
            return AnalysisResult.model_validate_json(content or "")
        except ValidationError as exc:
            logger.warning(
                "Unparseable analysis verdict | market=%s | tier=%s | error=%s",
                request.market.id,
                request.tier,
                exc,
            )
            return None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client
