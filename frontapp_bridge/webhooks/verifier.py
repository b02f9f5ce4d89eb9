"""Webhook authenticity, freshness and replay protection.

Frontapp signs every delivery with the shared webhook secret: the
``X-Front-Signature`` header is the hex HMAC-SHA256 of the request body.

Checks run in this order, each raising a :mod:`frontapp_bridge.errors`
boundary error that maps onto the HTTP answer:

1. signature header present                → 401 ``Missing signature header``
2. signature matches (constant time)       → 401 ``Invalid signature``
3. body carries ``payload`` and its ``id``  → 400
4. payload timestamp not older than 5 min  → 400 ``Webhook is too old``
   and not more than 60 s in the future    → 400
5. ``(type, id)`` not seen inside the window → 409 ``Duplicate webhook``

Only when every check passes is ``(type, id)`` recorded as processed.  The
record is written synchronously, before the envelope is handed to the
dispatcher, so a duplicate arriving while the first delivery is still being
processed is rejected rather than processed twice.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import math
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from frontapp_bridge.config import WEBHOOK_MAX_AGE_SECONDS
from frontapp_bridge.errors import (
    DuplicateWebhookError,
    FutureWebhookError,
    InvalidSignatureError,
    MissingSignatureError,
    StaleWebhookError,
    WebhookValidationError,
)
from frontapp_bridge.webhooks.models import WebhookEnvelope

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Front-Signature"
MAX_FUTURE_SKEW_SECONDS = 60
DEFAULT_MAX_TRACKED = 10_000

# Payload fields that may carry the event time, in order of preference.
_TIMESTAMP_FIELDS = ("created_at", "updated_at", "timestamp")


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of *body* keyed with *secret*."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def canonical_body(parsed: Any) -> bytes:
    """Compact JSON serialisation of an already-parsed body."""
    return json.dumps(parsed, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class ProcessedWebhookStore:
    """``(type, id)`` keys accepted within the last ``window`` seconds.

    Entries older than the window are pruned on every access, so a
    redelivery after the window is treated as new (at-least-once).
    """

    def __init__(
        self,
        window: float = WEBHOOK_MAX_AGE_SECONDS,
        max_entries: int = DEFAULT_MAX_TRACKED,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._window = window
        self._max_entries = max_entries
        self._clock = clock
        # key → accepted-at; insertion order == acceptance order
        self._seen: OrderedDict[tuple[str, str], float] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, key: tuple[str, str]) -> bool:
        with self._lock:
            self._prune()
            return key in self._seen

    def claim(self, key: tuple[str, str]) -> bool:
        """Record *key*.  Returns ``False`` if it was already recorded."""
        with self._lock:
            self._prune()
            if key in self._seen:
                return False
            self._seen[key] = self._clock()
            while len(self._seen) > self._max_entries:
                evicted, _ = self._seen.popitem(last=False)
                logger.info("Dedup store full; forgetting webhook %s", evicted)
            return True

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()

    def _prune(self) -> None:
        cutoff = self._clock() - self._window
        while self._seen:
            key, accepted_at = next(iter(self._seen.items()))
            if accepted_at > cutoff:
                break
            del self._seen[key]


def _extract_timestamp(payload: dict[str, Any]) -> float | None:
    for field in _TIMESTAMP_FIELDS:
        value = payload.get(field)
        if isinstance(value, bool):
            continue
        if isinstance(value, str):
            try:
                value = float(value)
            except ValueError:
                continue
        if isinstance(value, (int, float)) and math.isfinite(value) and value > 0:
            return float(value)
    return None


class SignatureVerifier:
    """Turns a raw webhook request into a claimed :class:`WebhookEnvelope`."""

    def __init__(
        self,
        secret: str,
        store: ProcessedWebhookStore | None = None,
        *,
        max_age: float = WEBHOOK_MAX_AGE_SECONDS,
        max_future_skew: float = MAX_FUTURE_SKEW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("A webhook secret is required to verify signatures")
        self._secret = secret
        self._clock = clock
        self._max_age = max_age
        self._max_future_skew = max_future_skew
        self.store = store if store is not None else ProcessedWebhookStore(max_age, clock=clock)

    def verify(self, raw_body: bytes, signature: str | None) -> WebhookEnvelope:
        """Run every check and claim the delivery.  Raises on rejection."""
        if not signature:
            logger.warning("Webhook rejected: missing %s header", SIGNATURE_HEADER)
            raise MissingSignatureError()

        parsed = self._parse(raw_body)
        if not self._signature_matches(raw_body, parsed, signature.strip().lower()):
            logger.warning("Webhook rejected: signature verification failed")
            raise InvalidSignatureError()

        envelope = self._build_envelope(parsed)
        self._check_freshness(envelope)

        if not self.store.claim(envelope.dedup_key):
            logger.warning(
                "Duplicate webhook received (possible replay): type=%s id=%s",
                envelope.type, envelope.id,
            )
            raise DuplicateWebhookError(type=envelope.type, id=envelope.id)

        return envelope

    # ── Checks ───────────────────────────────────────────────────────

    @staticmethod
    def _parse(raw_body: bytes) -> Any:
        try:
            return json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            return None

    def _signature_matches(self, raw_body: bytes, parsed: Any, signature: str) -> bool:
        candidates = [raw_body]
        if parsed is not None:
            canonical = canonical_body(parsed)
            if canonical != raw_body:
                candidates.append(canonical)
        # Headers arrive latin-1 decoded; compare bytes so non-ASCII input is a mismatch.
        presented = signature.encode("utf-8", "surrogateescape")
        matched = False
        for body in candidates:
            # Evaluate every candidate so timing does not depend on which matched.
            expected = compute_signature(body, self._secret).encode("ascii")
            if hmac.compare_digest(expected, presented):
                matched = True
        return matched

    def _build_envelope(self, parsed: Any) -> WebhookEnvelope:
        if not isinstance(parsed, dict) or not isinstance(parsed.get("payload"), dict):
            logger.warning("Webhook rejected: missing payload")
            raise WebhookValidationError("Missing payload")

        payload = parsed["payload"]
        webhook_id = payload.get("id")
        if not webhook_id:
            logger.warning("Webhook rejected: missing payload id (type=%s)", parsed.get("type"))
            raise WebhookValidationError("Missing webhook ID", type=parsed.get("type"))

        return WebhookEnvelope(
            type=str(parsed.get("type") or ""),
            payload=payload,
            id=str(webhook_id),
            received_at=self._clock(),
        )

    def _check_freshness(self, envelope: WebhookEnvelope) -> None:
        timestamp = _extract_timestamp(envelope.payload)
        if timestamp is None:
            logger.warning(
                "No timestamp found in webhook payload: type=%s id=%s",
                envelope.type, envelope.id,
            )
            return

        age = envelope.received_at - timestamp
        if age > self._max_age:
            logger.warning(
                "Webhook is too old (possible replay): type=%s id=%s age=%.1fs max=%.0fs",
                envelope.type, envelope.id, age, self._max_age,
            )
            raise StaleWebhookError(type=envelope.type, id=envelope.id, age=age)

        if -age > self._max_future_skew:
            logger.warning(
                "Webhook timestamp is in the future: type=%s id=%s ahead=%.1fs",
                envelope.type, envelope.id, -age,
            )
            raise FutureWebhookError(type=envelope.type, id=envelope.id, ahead=-age)
