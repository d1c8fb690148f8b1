from app.models.feedback import (  # noqa: F401
    Board,
    ChangelogEntry,
    ChangelogEntryPost,
    Comment,
    Post,
    Principal,
    PrincipalRole,
    PrincipalType,
    User,
    Vote,
    WorkspaceSettings,
)
from app.models.integrations import (  # noqa: F401
    HookDelivery,
    HookDeliveryStatus,
    Integration,
    IntegrationEventMapping,
    IntegrationStatus,
    Webhook,
    WebhookStatus,
)
from app.models.notifications import (  # noqa: F401
    InAppNotification,
    NotificationPreference,
    PostSubscription,
    SubscriptionReason,
    UnsubscribeAction,
    UnsubscribeToken,
)
