from __future__ import annotations

from typing import Any

PERM_WILDCARD = "*"
PERM_IDENTITY_READ = "identity.read"
PERM_IDENTITY_WRITE = "identity.write"
PERM_REGISTRY_READ = "registry.read"
PERM_REGISTRY_WRITE = "registry.write"
PERM_INSPECTION_READ = "inspection.read"
PERM_INSPECTION_WRITE = "inspection.write"
PERM_ISOLATION_READ = "isolation.read"
PERM_ISOLATION_WRITE = "isolation.write"
PERM_ISOLATION_APPROVE = "isolation.approve"
PERM_ISOLATION_DELETE = "isolation.delete"
PERM_DASHBOARD_READ = "dashboard.read"

ROLE_ADMIN = "admin"
ROLE_USER = "user"

ROLE_PERMISSIONS: dict[str, list[str]] = {
    ROLE_ADMIN: [PERM_WILDCARD],
    ROLE_USER: [
        PERM_IDENTITY_READ,
        PERM_REGISTRY_READ,
        PERM_INSPECTION_READ,
        PERM_ISOLATION_READ,
        PERM_ISOLATION_WRITE,
        PERM_DASHBOARD_READ,
    ],
}


def permissions_for_role(role: str) -> list[str]:
    return list(ROLE_PERMISSIONS.get(role, []))


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return False
    return permission in permissions or PERM_WILDCARD in permissions
