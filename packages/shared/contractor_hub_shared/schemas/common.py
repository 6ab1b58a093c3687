from enum import Enum
from typing import Optional
from pydantic import BaseModel

class PermissionFlag(str, Enum):
    MANAGE_ROLES = "manage_roles"
    MANAGE_ORDERS = "manage_orders"
    MANAGE_INVITES = "manage_invites"
    MANAGE_MARKET = "manage_market"
    MANAGE_WEBHOOKS = "manage_webhooks"
    MANAGE_RECRUITING = "manage_recruiting"
    MANAGE_BLOCKLIST = "manage_blocklist"
    MANAGE_ORG_DETAILS = "manage_org_details"
    MANAGE_STOCK = "manage_stock"
    KICK_MEMBERS = "kick_members"

# Every flag, in column order
PERMISSION_FLAGS: list[str] = [flag.value for flag in PermissionFlag]

class SiteRole(str, Enum):
    USER = "user"
    ADMIN = "admin"

class Pagination(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int

class APIResponse(BaseModel):
    data: Optional[object] = None
    error: Optional[object] = None
