import html
import re

import httpx

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")

RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}
AUTH_STATUS_CODES = {401, 403}


class HookHTTPError(Exception):
    """Raised by handlers for a non-2xx response from an integration API."""

    def __init__(self, status_code: int, message: str | None = None):
        self.status_code = status_code
        super().__init__(message or f"HTTP {status_code}")


def strip_html(value: str | None) -> str:
    if not value:
        return ""
    text = _TAG_RE.sub(" ", value)
    return _WS_RE.sub(" ", html.unescape(text)).strip()


def truncate(value: str, length: int) -> str:
    if len(value) <= length:
        return value
    return value[: length - 3].rstrip() + "..."


def status_code_of(error: BaseException) -> int | None:
    if isinstance(error, HookHTTPError):
        return error.status_code
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500 or status_code in RETRYABLE_STATUS_CODES


def is_retryable_error(error: BaseException) -> bool:
    status = status_code_of(error)
    if status is not None:
        return is_retryable_status(status)
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True
    return False


def is_auth_error(error: BaseException) -> bool:
    return status_code_of(error) in AUTH_STATUS_CODES


def build_post_url(root_url: str, board_slug: str, post_id) -> str:
    return f"{root_url}/b/{board_slug}/posts/{post_id}"


def resolve_commenter_name(author_name: str | None, author_email: str | None) -> str:
    if author_name:
        return author_name
    if author_email:
        return author_email.split("@")[0]
    return "Someone"
