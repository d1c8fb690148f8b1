import logging

from app.services.hooks.base import HookHandler

logger = logging.getLogger(__name__)


class HookRegistry:
    """Hook handlers by type. Populated at process start-up, cleared on shutdown."""

    def __init__(self) -> None:
        self._handlers: dict[str, HookHandler] = {}

    def register(self, handler: HookHandler) -> None:
        self._handlers[handler.hook_type] = handler

    def get(self, hook_type: str) -> HookHandler | None:
        if not self._handlers:
            self.load_defaults()
        return self._handlers.get(hook_type)

    def types(self) -> list[str]:
        return sorted(self._handlers)

    def load_defaults(self) -> None:
        from app.services.hooks.email import EmailHook
        from app.services.hooks.notification import NotificationHook
        from app.services.hooks.slack import SlackHook
        from app.services.hooks.webhook import WebhookHook

        for handler in (WebhookHook(), SlackHook(), EmailHook(), NotificationHook()):
            self.register(handler)
        logger.info("Registered hook handlers: %s", ", ".join(self.types()))

    def clear(self) -> None:
        self._handlers.clear()


hook_registry = HookRegistry()


def get_hook(hook_type: str) -> HookHandler | None:
    return hook_registry.get(hook_type)
