"""
Reasoning collaborator: the external service consulted on ambiguous cases.

The decision engine depends only on the narrow ``ReasoningClient``
protocol. ``AnthropicReasoningClient`` implements it with
langchain-anthropic and validates every answer against a typed schema;
anything that does not validate is reported as a collaborator failure
so the engine can fall back to its deterministic rules.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .config import OutreachConfig
from .errors import CollaboratorUnavailable, ReasoningResponseError
from .models import BehaviorSignalSet, TelemetrySnapshot, TrendAnalysis, Urgency
from .prompts import HEALTH_CHECK_PROMPT, REASONING_SYSTEM_PROMPT, build_reasoning_message
from .utils import extract_json, safe_json_serialize

logger = logging.getLogger("reengage.outreach.reasoning")


# =============================================================================
# Request / response
# =============================================================================


@dataclass(frozen=True)
class ReasoningRequest:
    """Context handed to the reasoning service for one decision."""

    current: TelemetrySnapshot
    signals: BehaviorSignalSet
    previous: TelemetrySnapshot | None = None
    trend: TrendAnalysis | None = None

    def to_payload(self) -> dict[str, Any]:
        return safe_json_serialize({
            "currentSnapshot": self.current.to_dict(),
            "previousSnapshot": self.previous.to_dict() if self.previous else None,
            "signals": self.signals.to_dict(),
            "trend": self.trend.to_dict() if self.trend else None,
        })


class ReasoningResponse(BaseModel):
    """Typed answer from the reasoning service."""

    model_config = ConfigDict(populate_by_name=True)

    should_call: bool = Field(alias="shouldCall")
    confidence: int = Field(ge=0, le=100)
    reasoning: str = ""
    urgency: Urgency = Urgency.LOW
    alternative_action: str | None = Field(default=None, alias="alternativeAction")


class ReasoningClient(Protocol):
    """Anything that can turn a ReasoningRequest into a ReasoningResponse.

    ``consult`` raises CollaboratorUnavailable on any failure; ``health_check``
    never raises and reports ``status: "error"`` instead.
    """

    def consult(self, request: ReasoningRequest) -> ReasoningResponse: ...

    def health_check(self) -> dict[str, Any]: ...


def parse_reasoning_response(content: Any) -> ReasoningResponse:
    """Validate raw LLM output against the response schema.

    Args:
        content: Message content; a string or a list of content blocks.

    Returns:
        ReasoningResponse.

    Raises:
        ReasoningResponseError: If no JSON object is found or it fails validation.
    """
    if isinstance(content, list):
        content = "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        )

    parsed = extract_json(content)
    if parsed is None:
        raise ReasoningResponseError("response contained no JSON object")

    try:
        return ReasoningResponse.model_validate(parsed)
    except PydanticValidationError as e:
        raise ReasoningResponseError(
            f"response failed schema validation ({e.error_count()} errors)"
        ) from e


# =============================================================================
# Anthropic-backed client
# =============================================================================


class AnthropicReasoningClient:
    """ReasoningClient backed by Claude through langchain-anthropic."""

    def __init__(self, config: OutreachConfig | None = None, llm: Any = None):
        self.config = config or OutreachConfig()
        self._llm = llm

    @property
    def configured(self) -> bool:
        return self._llm is not None or self.config.reasoning_configured

    def _get_llm(self) -> Any:
        if self._llm is None:
            if not self.config.reasoning_configured:
                raise CollaboratorUnavailable("reasoning", "ANTHROPIC_API_KEY is not set")
            self._llm = ChatAnthropic(
                model=self.config.model_name,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                api_key=self.config.anthropic_api_key,
                timeout=self.config.decision.reasoning_timeout_seconds,
            )
        return self._llm

    def consult(self, request: ReasoningRequest) -> ReasoningResponse:
        llm = self._get_llm()
        messages = [
            SystemMessage(content=REASONING_SYSTEM_PROMPT),
            HumanMessage(content=build_reasoning_message(request.to_payload())),
        ]

        start = time.time()
        try:
            response = llm.invoke(messages)
        except Exception as e:
            logger.warning(f"Reasoning call failed for {request.current.user_id}: {e}")
            raise CollaboratorUnavailable("reasoning", str(e)) from e

        result = parse_reasoning_response(response.content)
        logger.info(
            f"Reasoning for {request.current.user_id}: "
            f"call={result.should_call} confidence={result.confidence} "
            f"urgency={result.urgency.value} ({time.time() - start:.1f}s)"
        )
        return result

    def health_check(self) -> dict[str, Any]:
        """Send a trivial prompt and report whether the service answered."""
        try:
            response = self._get_llm().invoke([HumanMessage(content=HEALTH_CHECK_PROMPT)])
        except Exception as e:
            return {"status": "error", "model": self.config.model_name, "error": str(e)}
        return {
            "status": "healthy",
            "model": self.config.model_name,
            "response": str(response.content)[:50],
        }
