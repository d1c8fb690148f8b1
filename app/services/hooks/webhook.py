"""Outbound webhook delivery with HMAC signing.

Retries are driven by the ``run_hook`` task. This handler records
non-retryable failures (blocked address, 4xx) on the webhook row itself;
retryable failures are recorded by the task once attempts run out.
"""

import hashlib
import hmac
import ipaddress
import json
import logging
import socket
import time
from urllib.parse import urlparse

import httpx

from app.config import settings
from app.schemas.events import EventData
from app.services.hooks.base import HookHandler, HookResult
from app.services.hooks.utils import is_retryable_error, is_retryable_status

logger = logging.getLogger(__name__)

USER_AGENT = "FeedbackHub-Webhook/1.0"


def _is_blocked_address(address: str) -> bool:
    ip = ipaddress.ip_address(address)
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_unspecified
        or ip.is_multicast
    )


def resolve_and_validate_host(hostname: str) -> str | None:
    """Return an error message when ``hostname`` resolves to an internal address.

    A temporary resolver failure (``EAI_AGAIN``) is raised instead.
    """
    try:
        infos = socket.getaddrinfo(hostname, None, proto=socket.IPPROTO_TCP)
    except socket.gaierror as e:
        # A resolver outage is transient; let the caller retry
        if e.errno == socket.EAI_AGAIN:
            raise
        return f"Could not resolve hostname: {e}"
    addresses = {info[4][0] for info in infos}
    if not addresses:
        return "Could not resolve hostname"
    for address in sorted(addresses):
        if _is_blocked_address(address):
            return f"DNS resolves to private IP: {address}"
    return None


def build_payload(event: EventData) -> str:
    # The envelope id doubles as an idempotency key for receivers, so a
    # retried delivery carries the same id as the first attempt.
    return json.dumps(
        {
            "id": f"evt_{event.id.hex}",
            "type": event.type,
            "createdAt": event.timestamp.isoformat(),
            "data": event.data.model_dump(mode="json"),
        },
        separators=(",", ":"),
    )


def sign_payload(secret: str, timestamp: int, body: str) -> str:
    digest = hmac.new(
        secret.encode(), f"{timestamp}.{body}".encode(), hashlib.sha256
    ).hexdigest()
    return f"sha256={digest}"


class WebhookHook(HookHandler):
    hook_type = "webhook"

    def __init__(self, session_factory=None, transport: httpx.BaseTransport | None = None):
        self._session_factory = session_factory
        self._transport = transport

    def _record(self, webhook_id: str | None, error: str | None) -> None:
        if not webhook_id:
            return
        from app.services.webhook import record_webhook_failure, record_webhook_success

        if self._session_factory is None:
            from app.db import SessionLocal

            session_factory = SessionLocal
        else:
            session_factory = self._session_factory
        db = session_factory()
        try:
            if error is None:
                record_webhook_success(db, webhook_id)
            else:
                record_webhook_failure(db, webhook_id, error)
        except Exception:
            logger.exception("Failed to update delivery status for webhook %s", webhook_id)
        finally:
            db.close()

    def execute(self, event: EventData, target: dict, config: dict) -> HookResult:
        url = target["url"]
        secret = config.get("secret") or ""
        webhook_id = config.get("webhook_id")

        hostname = urlparse(url).hostname or ""
        try:
            blocked = resolve_and_validate_host(hostname)
        except socket.gaierror as e:
            logger.warning("Temporary DNS failure for %s: %s", hostname, e)
            return HookResult.failed(f"DNS lookup failed: {e}", should_retry=True)
        if blocked:
            logger.warning("Webhook %s blocked: %s", webhook_id, blocked)
            self._record(webhook_id, f"SSRF blocked: {blocked}")
            return HookResult.failed(blocked, should_retry=False)

        body = build_payload(event)
        timestamp = int(time.time())
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Feedback-Signature": sign_payload(secret, timestamp, body),
            "X-Feedback-Timestamp": str(timestamp),
            "X-Feedback-Event": event.type,
            "X-Feedback-Event-Id": str(event.id),
        }

        try:
            with httpx.Client(
                timeout=settings.hook_timeout_seconds,
                follow_redirects=False,
                transport=self._transport,
            ) as client:
                resp = client.post(url, content=body, headers=headers)
        except httpx.TimeoutException:
            logger.warning("Webhook delivery to %s timed out", url)
            return HookResult.failed("Request timeout", should_retry=True)
        except (httpx.HTTPError, OSError) as e:
            retryable = is_retryable_error(e)
            logger.warning("Webhook delivery to %s failed: %s", url, e)
            if not retryable:
                self._record(webhook_id, str(e))
            return HookResult.failed(str(e) or type(e).__name__, should_retry=retryable)

        if 200 <= resp.status_code < 300:
            logger.info("Delivered %s to webhook %s", event.type, webhook_id)
            self._record(webhook_id, None)
            return HookResult.ok()

        error = f"HTTP {resp.status_code}"
        retryable = is_retryable_status(resp.status_code)
        logger.warning("Webhook delivery to %s failed: %s", url, error)
        if not retryable:
            self._record(webhook_id, error)
        return HookResult.failed(error, should_retry=retryable)
