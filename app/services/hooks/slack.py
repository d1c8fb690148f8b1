import logging

import httpx

from app.config import settings
from app.schemas.events import (
    ChangelogPublishedEvent,
    CommentCreatedEvent,
    EventData,
    PostCreatedEvent,
    PostStatusChangedEvent,
)
from app.services.hooks.base import HookHandler, HookResult
from app.services.hooks.utils import (
    HookHTTPError,
    build_post_url,
    resolve_commenter_name,
    strip_html,
    truncate,
)

logger = logging.getLogger(__name__)

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"

_AUTH_ERRORS = {"invalid_auth", "not_authed", "account_inactive", "token_revoked"}
_RETRYABLE_ERRORS = {"ratelimited", "service_unavailable", "internal_error", "request_timeout"}


def build_message(event: EventData, root_url: str) -> str:
    match event:
        case PostCreatedEvent():
            post = event.data.post
            url = build_post_url(root_url, post.board_slug, post.id)
            preview = truncate(strip_html(post.content), 280)
            return f"New feedback: <{url}|{post.title}>\n{preview}"
        case PostStatusChangedEvent():
            post = event.data.post
            url = build_post_url(root_url, post.board_slug, post.id)
            return (
                f"Status updated: <{url}|{post.title}> "
                f"{event.data.previous_status} -> {event.data.new_status}"
            )
        case CommentCreatedEvent():
            post, comment = event.data.post, event.data.comment
            url = f"{build_post_url(root_url, post.board_slug, post.id)}#comment-{comment.id}"
            author = resolve_commenter_name(comment.author_name, comment.author_email)
            preview = truncate(strip_html(comment.content), 280)
            return f"{author} commented on <{url}|{post.title}>\n{preview}"
        case ChangelogPublishedEvent():
            changelog = event.data.changelog
            return f"Changelog published: <{root_url}/changelog|{changelog.title}>"
        case _:
            raise TypeError(f"Unhandled event type: {event.type}")


class SlackHook(HookHandler):
    hook_type = "slack"

    def __init__(self, transport: httpx.BaseTransport | None = None):
        self._transport = transport

    def execute(self, event: EventData, target: dict, config: dict) -> HookResult:
        channel_id = target.get("channel_id")
        if not channel_id:
            return HookResult.failed("No channel configured", should_retry=False)
        access_token = config.get("access_token")
        if not access_token:
            return HookResult.failed(
                "Slack is not connected; reconnect the integration", should_retry=False
            )

        text = build_message(event, config.get("root_url", ""))
        with httpx.Client(
            timeout=settings.hook_timeout_seconds, transport=self._transport
        ) as client:
            resp = client.post(
                SLACK_POST_MESSAGE_URL,
                headers={"Authorization": f"Bearer {access_token}"},
                json={"channel": channel_id, "text": text, "unfurl_links": False},
            )
        if resp.status_code >= 400:
            raise HookHTTPError(resp.status_code)

        body = resp.json()
        if body.get("ok"):
            return HookResult.ok(external_id=body.get("ts"))

        error = body.get("error", "unknown_error")
        if error in _AUTH_ERRORS:
            return HookResult.failed(
                f"Authentication failed ({error}); reconnect the integration",
                should_retry=False,
            )
        return HookResult.failed(error, should_retry=error in _RETRYABLE_ERRORS)
