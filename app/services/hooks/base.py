import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar

from pydantic import BaseModel

from app.schemas.events import EventData, EventType
from app.services.hooks.utils import is_auth_error, is_retryable_error

logger = logging.getLogger(__name__)


class HookResult(BaseModel):
    success: bool
    external_id: str | None = None
    external_url: str | None = None
    error: str | None = None
    should_retry: bool = False

    @classmethod
    def ok(cls, external_id: str | None = None, external_url: str | None = None):
        return cls(success=True, external_id=external_id, external_url=external_url)

    @classmethod
    def failed(cls, error: str, should_retry: bool):
        return cls(success=False, error=error, should_retry=should_retry)


@dataclass
class HookTarget:
    """A resolved hook invocation: which handler, where to, and with what config."""

    type: str
    target: dict[str, Any]
    config: dict[str, Any] = field(default_factory=dict)


def classify_exception(error: BaseException) -> HookResult:
    """Map an exception raised while calling an integration to a failed result.

    401/403 need the integration reconnected, so they never retry. Everything
    else follows ``is_retryable_error``.
    """
    if is_auth_error(error):
        return HookResult.failed(
            f"Authentication failed ({error}); reconnect the integration",
            should_retry=False,
        )
    return HookResult.failed(str(error) or type(error).__name__, is_retryable_error(error))


class HookHandler:
    hook_type: ClassVar[str]
    supported_events: ClassVar[frozenset[EventType]] = frozenset(EventType)

    def supports(self, event: EventData) -> bool:
        return event.event_type in self.supported_events

    def run(self, event: EventData, target: dict, config: dict) -> HookResult:
        """Execute the hook. Never raises."""
        if not self.supports(event):
            return HookResult.ok()
        try:
            return self.execute(event, target, config)
        except Exception as e:
            logger.warning("%s hook failed for event %s: %s", self.hook_type, event.id, e)
            return classify_exception(e)

    def execute(self, event: EventData, target: dict, config: dict) -> HookResult:
        raise NotImplementedError
