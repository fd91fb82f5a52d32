"""
Stage event notifications for orchestrators that pass a ``callback_url``.

Events are POSTed as compact JSON. When ``ASSEMBLER_WEBHOOK_SECRET`` is set
the body is signed with HMAC-SHA256 and the hex digest is sent as
``X-Assembler-Webhook-Signature: sha256=<digest>``. Receivers must verify the
raw body, not a re-serialized copy.

Delivery is best effort: failed attempts back off exponentially, and a final
failure is returned as a ``DeliveryResult`` instead of failing the stage.
"""

import asyncio
import hashlib
import hmac
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from app.config import get_settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Assembler-Webhook-Signature"
USER_AGENT = "Narration-Assembler/1.0"


def sign_body(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def backoff_delay(attempt: int, base_seconds: float) -> float:
    """Delay before retrying after ``attempt`` (1-based) failed."""
    return base_seconds * (2 ** (attempt - 1))


@dataclass
class DeliveryResult:
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    attempts: int = 0


@dataclass
class StageEvent:
    """One stage outcome: ``stage.completed`` or ``stage.failed``."""

    event: str
    timestamp: str
    video_id: str
    stage: str
    unit: str
    status: str
    error: Optional[str] = None
    output: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}

    def encode(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":"), sort_keys=True).encode("utf-8")


class WebhookService:
    """Delivers ``StageEvent`` bodies to callback URLs."""

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout_seconds
        self.max_retries = max_retries
        self.retry_delay = retry_delay_seconds
        self._transport = transport
        self._secret = get_settings().assembler_webhook_secret

        if not self._secret:
            logger.warning("ASSEMBLER_WEBHOOK_SECRET not configured - stage events are sent unsigned")

    def build_payload(
        self,
        event: str,
        video_id: str,
        stage: str,
        unit: str,
        status: str,
        error: Optional[str] = None,
        output: Optional[dict[str, Any]] = None,
    ) -> StageEvent:
        return StageEvent(
            event=event,
            timestamp=datetime.now(timezone.utc).isoformat(),
            video_id=video_id,
            stage=stage,
            unit=unit,
            status=status,
            error=error,
            output=output or None,
        )

    def headers_for(self, event: StageEvent, body: bytes) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Webhook-Event": event.event,
            "X-Video-Id": event.video_id,
        }
        if self._secret:
            headers[SIGNATURE_HEADER] = sign_body(self._secret, body)
        return headers

    async def send(self, url: str, event: StageEvent) -> DeliveryResult:
        """
        POST ``event`` to ``url``, retrying on transport errors and non-2xx replies.

        Returns:
            DeliveryResult; ``attempts`` counts the requests actually made.
        """
        if not url:
            return DeliveryResult(success=False, error="No callback URL provided")

        body = event.encode()
        headers = self.headers_for(event, body)
        label = f"{event.event} {event.video_id}/{event.unit}"
        last_error: Optional[str] = None

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(1, self.max_retries + 1):
                try:
                    response = await client.post(url, content=body, headers=headers)
                except httpx.TimeoutException:
                    last_error = "Request timed out"
                except httpx.RequestError as e:
                    last_error = f"Request error: {e}"
                else:
                    if response.is_success:
                        logger.info(f"Webhook delivered: {label} (attempt {attempt}, HTTP {response.status_code})")
                        return DeliveryResult(success=True, status_code=response.status_code, attempts=attempt)
                    last_error = f"HTTP {response.status_code}: {response.text[:200]}"

                logger.warning(f"Webhook attempt {attempt}/{self.max_retries} failed for {label}: {last_error}")
                if attempt < self.max_retries:
                    await asyncio.sleep(backoff_delay(attempt, self.retry_delay))

        logger.error(f"Giving up on webhook {label} -> {url}: {last_error}")
        return DeliveryResult(success=False, error=last_error, attempts=self.max_retries)


_webhook_service: Optional[WebhookService] = None


def get_webhook_service() -> WebhookService:
    global _webhook_service
    if _webhook_service is None:
        _webhook_service = WebhookService()
    return _webhook_service
