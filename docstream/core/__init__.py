"""Core application utilities.

FastAPI dependencies live in ``core.dependencies`` and are imported from
there directly, since they depend on the service layer.
"""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    build_engine,
    build_session_factory,
    close_db,
    engine,
    get_session,
    init_db,
)
from .permissions import (
    DEFAULT_PERMISSIONS,
    ROLE_PERMISSIONS,
    PermissionTable,
    delegation_active,
    effective_role,
    has_permission,
)
from .security import (
    create_access_token,
    decode_token,
    hash_content,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "build_engine",
    "build_session_factory",
    "get_session",
    "init_db",
    "close_db",
    # Permissions
    "ROLE_PERMISSIONS",
    "DEFAULT_PERMISSIONS",
    "PermissionTable",
    "has_permission",
    "delegation_active",
    "effective_role",
    # Security
    "create_access_token",
    "decode_token",
    "hash_content",
]
