import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from app.config import settings
from app.schemas.events import (
    ChangelogPublishedEvent,
    CommentCreatedEvent,
    EventData,
    EventType,
    PostStatusChangedEvent,
)
from app.services.hooks.base import HookHandler, HookResult

logger = logging.getLogger(__name__)


def build_email(event: EventData, config: dict, unsubscribe_url: str | None) -> tuple[str, str]:
    """Return ``(subject, html)`` for a subscriber email."""
    workspace = escape(config.get("workspace_name") or settings.brand_name)
    match event:
        case PostStatusChangedEvent():
            title = config.get("post_title", "")
            subject = f"[{config.get('workspace_name') or settings.brand_name}] Status update: {title}"
            body = (
                f"<p>The status of <a href=\"{escape(config.get('post_url', ''))}\">"
                f"{escape(title)}</a> changed from "
                f"<strong>{escape(config.get('previous_status', ''))}</strong> to "
                f"<strong>{escape(config.get('new_status', ''))}</strong>.</p>"
            )
        case CommentCreatedEvent():
            title = config.get("post_title", "")
            commenter = config.get("commenter_name", "Someone")
            label = " (team)" if config.get("is_team_member") else ""
            subject = f"[{config.get('workspace_name') or settings.brand_name}] New comment on {title}"
            body = (
                f"<p>{escape(commenter)}{label} commented on "
                f"<a href=\"{escape(config.get('post_url', ''))}\">{escape(title)}</a>:</p>"
                f"<blockquote>{escape(config.get('comment_preview', ''))}</blockquote>"
            )
        case ChangelogPublishedEvent():
            title = config.get("changelog_title", "")
            subject = f"[{config.get('workspace_name') or settings.brand_name}] Shipped: {title}"
            body = (
                f"<p>Something you asked for has shipped: "
                f"<a href=\"{escape(config.get('changelog_url', ''))}\">{escape(title)}</a></p>"
                f"<p>{escape(config.get('content_preview', ''))}</p>"
            )
        case _:
            raise TypeError(f"No email template for {event.type}")

    footer = f"<p style=\"color:#888\">Sent by {workspace}."
    if unsubscribe_url:
        footer += f" <a href=\"{escape(unsubscribe_url)}\">Unsubscribe from this post</a>"
    footer += "</p>"
    return subject, body + footer


def send_email(to_email: str, subject: str, html_content: str) -> None:
    """Send through SMTP when configured, otherwise log the message."""
    if not settings.smtp_host:
        logger.info("Email not sent (SMTP not configured): to=%s subject=%s", to_email, subject)
        return

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = settings.smtp_from_email
    msg["To"] = to_email
    msg.attach(MIMEText(html_content, "html"))

    with smtplib.SMTP(
        settings.smtp_host, settings.smtp_port, timeout=settings.hook_timeout_seconds
    ) as server:
        server.starttls()
        if settings.smtp_user:
            server.login(settings.smtp_user, settings.smtp_password)
        server.sendmail(settings.smtp_from_email, [to_email], msg.as_string())


class EmailHook(HookHandler):
    hook_type = "email"
    supported_events = frozenset(
        {
            EventType.post_status_changed,
            EventType.comment_created,
            EventType.changelog_published,
        }
    )

    def execute(self, event: EventData, target: dict, config: dict) -> HookResult:
        to_email = target.get("email")
        if not to_email:
            return HookResult.failed("No recipient address", should_retry=False)

        subject, html_content = build_email(event, config, target.get("unsubscribe_url"))
        try:
            send_email(to_email, subject, html_content)
        except smtplib.SMTPResponseException as e:
            # 4xx replies are transient, 5xx are permanent
            retryable = 400 <= e.smtp_code < 500
            logger.warning("SMTP rejected email to %s: %s %s", to_email, e.smtp_code, e.smtp_error)
            return HookResult.failed(f"SMTP {e.smtp_code}", should_retry=retryable)
        except smtplib.SMTPRecipientsRefused as e:
            return HookResult.failed(f"Recipient refused: {e}", should_retry=False)
        except (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError, OSError) as e:
            logger.warning("SMTP connection failed for %s: %s", to_email, e)
            return HookResult.failed(str(e) or type(e).__name__, should_retry=True)

        logger.info("Sent %s email to %s", event.type, to_email)
        return HookResult.ok()
