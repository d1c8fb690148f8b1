import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.models.feedback import WorkspaceSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HookContext:
    """Workspace details shared by every target resolved for one event."""

    workspace_id: str
    workspace_name: str
    workspace_slug: str
    portal_base_url: str


def portal_base_url_for(slug: str) -> str:
    if settings.portal_base_url:
        return settings.portal_base_url
    return f"https://{slug}.{settings.app_domain}"


def build_hook_context(db: Session) -> HookContext | None:
    """Read workspace settings once. ``None`` means the workspace is not provisioned."""
    workspace = db.scalars(select(WorkspaceSettings).limit(1)).first()
    if workspace is None:
        return None
    return HookContext(
        workspace_id=str(workspace.id),
        workspace_name=workspace.name,
        workspace_slug=workspace.slug,
        portal_base_url=portal_base_url_for(workspace.slug),
    )
