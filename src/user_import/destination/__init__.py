"""Per-tenant destination user store."""

from user_import.destination.models import DestinationBase, TenantUser
from user_import.destination.store import DestinationUser, SqlUserStore, UserStore

__all__ = [
    "DestinationBase",
    "TenantUser",
    "DestinationUser",
    "UserStore",
    "SqlUserStore",
]
