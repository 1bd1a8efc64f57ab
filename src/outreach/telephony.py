"""
Telephony collaborator: places the outreach call.

``TelephonyClient`` is the narrow interface the orchestrator depends on.
``VapiTelephonyClient`` implements it against the Vapi REST API with
requests. Transport failures raise CollaboratorUnavailable; an API that
answers with an error status yields ``TelephonyResponse(success=False)``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import requests

from .config import OutreachConfig
from .errors import CollaboratorUnavailable
from .models import OutreachDecision, TelemetrySnapshot, Urgency

logger = logging.getLogger("reengage.outreach.telephony")


@dataclass(frozen=True)
class TelephonyRequest:
    destination: str
    personalized_script: str
    metadata: dict[str, Any] = field(default_factory=dict)
    first_message: str | None = None
    customer_name: str | None = None


@dataclass(frozen=True)
class TelephonyResponse:
    success: bool
    dispatch_id: str | None = None
    error: str | None = None


class TelephonyClient(Protocol):
    def place_call(self, request: TelephonyRequest) -> TelephonyResponse: ...

    def get_call(self, call_id: str) -> dict[str, Any]: ...


# =============================================================================
# Call script
# =============================================================================


@dataclass(frozen=True)
class CallScript:
    greeting: str
    message: str
    call_to_action: str
    guidance: str

    def render(self) -> str:
        return "\n\n".join(
            [self.greeting, self.message, self.call_to_action, "---", self.guidance]
        )


def build_call_script(
    snapshot: TelemetrySnapshot,
    decision: OutreachDecision,
    removal_count: int = 0,
    company_name: str = "our store",
) -> CallScript:
    """Pick a short script template from removal count, cart value and urgency."""
    name = snapshot.user_name or "there"
    category = snapshot.last_category or "our products"
    items = snapshot.cart_items
    value = snapshot.cart_value

    if removal_count >= 3 and items > 0:
        greeting = f"Hi {name}! This is Sarah from the {company_name} customer team. Is now an okay time?"
        message = (
            f"I noticed you have {items} item{'s' if items != 1 else ''} in your cart, "
            f"about ${value:.0f} worth, and you've been adding and removing things a few times. "
            "Is there something specific you're looking for, or any questions I can answer?"
        )
        call_to_action = (
            "I can help you right now, or send you a personal discount code to make the "
            "decision easier. What do you think?"
        )
    elif value > 100:
        greeting = f"Hey {name}! This is Sarah calling from {company_name}. How's it going?"
        message = (
            f"I saw you were checking out our {category} section and left a few things in your cart. "
            "Was there anything about checkout, shipping or returns I could help with?"
        )
        call_to_action = (
            "If there's anything I can do to help you finish that order, just let me know. "
            "We may be able to do something on the price too."
        )
    else:
        greeting = f"Hey {name}! This is Sarah calling from {company_name}. How's it going?"
        message = (
            f"Last time you were with us you were looking at {category}. "
            "Did you find what you were looking for?"
        )
        call_to_action = (
            "I can help you look right now, or send a few recommendations based on what you "
            "were browsing. No pressure at all!"
        )

    if decision.urgency is Urgency.HIGH:
        strategy = (
            "Recovery call: the shopper is close to purchasing but hesitant. Remove barriers "
            "(price, shipping, product questions) and aim to convert today."
        )
    else:
        strategy = (
            "Gentle re-engagement: understand their experience and offer value. "
            "Do not push for a sale."
        )

    guidance = (
        f"CONTEXT: cart items {items}, cart value ${value:.2f}, removals {removal_count}, "
        f"urgency {decision.urgency.value}.\n{strategy}\n"
        "Be warm and conversational. Listen more than you talk. "
        "If they are not interested, end the call politely."
    )
    return CallScript(greeting, message, call_to_action, guidance)


# =============================================================================
# Vapi client
# =============================================================================

# place_call may create an assistant before placing the call
MAX_REQUESTS_PER_CALL = 2

ASSISTANT_DEFAULTS: dict[str, Any] = {
    "name": "Reengage Outreach Assistant",
    "model": {"provider": "openai", "model": "gpt-4", "temperature": 0.85},
    "voice": {"provider": "11labs", "voiceId": "EXAVITQu4vr4xnSDxMaL"},
    "endCallFunctionEnabled": True,
    "recordingEnabled": True,
    "maxDurationSeconds": 600,
    "voicemailDetectionEnabled": True,
    "silenceTimeoutSeconds": 30,
}


class VapiTelephonyClient:
    """TelephonyClient backed by the Vapi REST API."""

    def __init__(self, config: OutreachConfig | None = None, session: requests.Session | None = None):
        self.config = config or OutreachConfig()
        self.base_url = self.config.vapi_base_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {self.config.vapi_api_key}",
            "Content-Type": "application/json",
        })

    @property
    def configured(self) -> bool:
        return self.config.telephony_configured

    def _post(self, path: str, payload: dict[str, Any]) -> requests.Response:
        try:
            return self.session.post(
                f"{self.base_url}{path}",
                json=payload,
                timeout=self.config.telephony_timeout_seconds,
            )
        except requests.RequestException as e:
            raise CollaboratorUnavailable("telephony", str(e)) from e

    def _create_assistant(self, request: TelephonyRequest) -> str:
        payload = {
            **ASSISTANT_DEFAULTS,
            "model": {
                **ASSISTANT_DEFAULTS["model"],
                "messages": [{"role": "system", "content": request.personalized_script}],
            },
        }
        if request.first_message:
            payload["firstMessage"] = request.first_message

        resp = self._post("/assistant", payload)
        if not resp.ok:
            raise CollaboratorUnavailable(
                "telephony", f"assistant creation failed: HTTP {resp.status_code}"
            )
        return resp.json()["id"]

    def place_call(self, request: TelephonyRequest) -> TelephonyResponse:
        if not self.configured:
            raise CollaboratorUnavailable("telephony", "VAPI_API_KEY / VAPI_PHONE_NUMBER_ID not set")
        if not request.destination:
            return TelephonyResponse(success=False, error="no destination number")

        assistant_id = self.config.vapi_assistant_id or self._create_assistant(request)
        overrides: dict[str, Any] = {
            "variableValues": {
                "company_name": self.config.company_name,
                "user_name": request.customer_name or "",
                "user_id": request.metadata.get("user_id", ""),
            },
            "metadata": {
                "callReason": "engagement_drop",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                **request.metadata,
            },
        }
        if self.config.vapi_assistant_id and request.first_message:
            overrides["firstMessage"] = request.first_message

        payload = {
            "assistantId": assistant_id,
            "phoneNumberId": self.config.vapi_phone_number_id,
            "customer": {"number": request.destination, "name": request.customer_name},
            "assistantOverrides": overrides,
        }

        logger.info(f"Placing call to {request.destination}")
        resp = self._post("/call/phone", payload)
        if not resp.ok:
            logger.error(f"Vapi rejected call: HTTP {resp.status_code} {resp.text[:200]}")
            return TelephonyResponse(success=False, error=f"HTTP {resp.status_code}")

        call_id = resp.json().get("id")
        logger.info(f"Call placed, id={call_id}")
        return TelephonyResponse(success=True, dispatch_id=call_id)

    def get_call(self, call_id: str) -> dict[str, Any]:
        """Fetch call details (status, transcript, recording) by id."""
        try:
            resp = self.session.get(
                f"{self.base_url}/call/{call_id}",
                timeout=self.config.telephony_timeout_seconds,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise CollaboratorUnavailable("telephony", str(e)) from e
        return resp.json()
