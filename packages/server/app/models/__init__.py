# SQLModel definitions - imported here to ensure metadata is populated for Alembic.
from .base import UUIDMixin, TimestampMixin, CreatedAtMixin  # noqa: F401
from .user import User  # noqa: F401
from .contractor import Contractor  # noqa: F401
from .contractor_role import ContractorRole, ContractorMemberRole  # noqa: F401
from .contractor_member import ContractorMember  # noqa: F401
from .contractor_invite import ContractorInvite  # noqa: F401
from .audit_log import AuditLog  # noqa: F401
from .notification import (  # noqa: F401
    Notification,
    NotificationActionType,
    NotificationChange,
    NotificationObject,
)
from .push import PushPreference, PushSubscription  # noqa: F401
from .webhook import NotificationWebhook  # noqa: F401
from .admin_alert import AdminAlert  # noqa: F401
