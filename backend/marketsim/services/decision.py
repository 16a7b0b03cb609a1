from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Protocol

import httpx

from marketsim.config import Settings
from marketsim.services.order_book import Order

logger = logging.getLogger(__name__)

DECISION_AGENT_ID = "ai-decision"
MAX_DECISION_QUANTITY = 50_000
FAILURE_BACKOFF_SECONDS = 90


class DecisionProvider(Protocol):
    async def decide(self, summary: Dict[str, Any]) -> Order | None:
        ...


def _safe_json_extract(text: str) -> Dict[str, Any]:
    text = text.strip()
    try:
        value = json.loads(text)
        return value if isinstance(value, dict) else {}
    except json.JSONDecodeError:
        pass
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return {}
    try:
        value = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def normalize_decision(raw: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    if isinstance(raw, dict):
        payload = raw
    elif isinstance(raw, str):
        payload = _safe_json_extract(raw)

    side = str(payload.get("side", "hold")).lower().strip()
    if side not in {"buy", "sell", "hold"}:
        side = "hold"

    try:
        quantity = int(payload.get("quantity", 0))
    except (TypeError, ValueError):
        quantity = 0
    quantity = int(max(0, min(MAX_DECISION_QUANTITY, quantity)))

    try:
        confidence = float(payload.get("confidence", 0.5))
    except (TypeError, ValueError):
        confidence = 0.5
    confidence = float(max(0, min(1, confidence)))

    try:
        price = float(payload.get("price", 0))
    except (TypeError, ValueError):
        price = 0.0

    return {
        "side": side,
        "quantity": quantity,
        "confidence": confidence,
        "price": max(0.0, price),
        "rationale": str(payload.get("rationale", "No rationale returned.")),
    }


def decision_to_order(decision: Dict[str, Any], summary: Dict[str, Any]) -> Order | None:
    if decision["side"] == "hold" or decision["quantity"] <= 0:
        return None
    price = decision["price"] or float(summary.get("price", 0))
    if price <= 0:
        return None
    return Order(
        side=decision["side"],
        price=price,
        quantity=decision["quantity"],
        agent_id=DECISION_AGENT_ID,
        tick=int(summary.get("tick", 0)),
        is_ai=True,
        reasoning=decision["rationale"],
        confidence=decision["confidence"],
    )


class WebhookDecisionProvider:
    """Asks an external HTTP service for one trade per request.

    The service receives the market summary as JSON and answers with
    ``side``, ``quantity``, ``confidence`` and ``rationale``. Anything it
    gets wrong is clamped; any failure becomes a hold and pauses further
    requests for a while.
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.url = settings.decision_webhook_url
        self.timeout = settings.decision_timeout_seconds
        self._transport = transport
        self._backoff_until: datetime | None = None

    @property
    def backing_off(self) -> bool:
        return self._backoff_until is not None and datetime.now(timezone.utc) < self._backoff_until

    async def decide(self, summary: Dict[str, Any]) -> Order | None:
        if not self.url or self.backing_off:
            return None

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=summary)
                response.raise_for_status()
                raw = response.json() if response.content else {}
        except (httpx.HTTPError, ValueError) as exc:
            self._backoff_until = datetime.now(timezone.utc) + timedelta(seconds=FAILURE_BACKOFF_SECONDS)
            logger.warning("Decision webhook failed, backing off %ss: %s", FAILURE_BACKOFF_SECONDS, exc)
            return None

        decision = normalize_decision(raw)
        order = decision_to_order(decision, summary)
        if order is not None:
            logger.info("Decision webhook: %s %d @ %.2f (%s)", order.side, order.quantity, order.price, decision["rationale"])
        return order
