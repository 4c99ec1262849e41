"""Permission classification.

Graph permission payloads come in several overlapping shapes (direct user
grants, identity arrays, sharing links, group and site-group grants), and a
fair share of them are partially populated. parse_permission() turns each raw
payload into exactly one variant of a closed union; everything downstream
matches on the variant instead of probing optional fields.

Only two variants are ever reported: a grant to a named user and an
anonymous ("anyone with the link") sharing link.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from permission_mirror.platform_api.models import (
    PERMISSION_TYPE_ANYONE,
    PERMISSION_TYPE_USER,
    ReportablePermission,
)

logger = logging.getLogger(__name__)

LINK_SCOPE_ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class GrantedUser:
    """A user identity a permission is granted to."""

    id: str
    display_name: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class DirectUserGrant:
    id: str
    roles: tuple[str, ...]
    user: GrantedUser


@dataclass(frozen=True)
class AnonymousLinkGrant:
    id: str
    roles: tuple[str, ...]
    web_url: str | None


@dataclass(frozen=True)
class LinkUsersGrant:
    """A sharing link limited to specific identities, with no direct grantee."""

    id: str
    roles: tuple[str, ...]
    scope: str | None
    users: tuple[GrantedUser, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class UnsupportedGrant:
    """Group grants, organisation-wide links and malformed payloads."""

    id: str | None
    reason: str


Permission = DirectUserGrant | AnonymousLinkGrant | LinkUsersGrant | UnsupportedGrant


def _parse_user(raw: Any) -> GrantedUser | None:
    if not isinstance(raw, dict):
        return None
    user_id = raw.get("id")
    if not isinstance(user_id, str) or not user_id:
        return None
    return GrantedUser(id=user_id, display_name=raw.get("displayName"), email=raw.get("email"))


def parse_permission(raw: Any) -> Permission:
    """Classify one raw Graph permission payload.

    Never raises: anything that is not unambiguously a known shape becomes an
    UnsupportedGrant.
    """
    if not isinstance(raw, dict):
        logger.warning("[parse_permission] permission payload is not an object")
        return UnsupportedGrant(id=None, reason="not an object")

    permission_id = raw.get("id")
    if not isinstance(permission_id, str) or not permission_id:
        logger.warning("[parse_permission] permission has no id")
        return UnsupportedGrant(id=None, reason="missing id")

    roles = raw.get("roles", [])
    if not isinstance(roles, list) or not all(isinstance(role, str) for role in roles):
        logger.warning("[parse_permission] invalid roles; permission_id:%s", permission_id)
        return UnsupportedGrant(id=permission_id, reason="invalid roles")

    granted_to = raw.get("grantedToV2") or {}
    user = _parse_user(granted_to.get("user")) if isinstance(granted_to, dict) else None
    if user is not None:
        return DirectUserGrant(id=permission_id, roles=tuple(roles), user=user)

    link = raw.get("link") if isinstance(raw.get("link"), dict) else {}
    scope = link.get("scope")
    if scope == LINK_SCOPE_ANONYMOUS:
        return AnonymousLinkGrant(id=permission_id, roles=tuple(roles), web_url=link.get("webUrl"))

    identities = raw.get("grantedToIdentitiesV2")
    if identities is not None:
        if not isinstance(identities, list):
            logger.warning(
                "[parse_permission] invalid identity array; permission_id:%s", permission_id
            )
            return UnsupportedGrant(id=permission_id, reason="invalid identities")
        users = []
        for entry in identities:
            parsed = _parse_user(entry.get("user")) if isinstance(entry, dict) else None
            if parsed is not None:
                users.append(parsed)
        if not users:
            logger.warning(
                "[parse_permission] empty identity array; permission_id:%s", permission_id
            )
            return UnsupportedGrant(id=permission_id, reason="empty identities")
        return LinkUsersGrant(
            id=permission_id, roles=tuple(roles), scope=scope, users=tuple(users)
        )

    if granted_to:
        return UnsupportedGrant(id=permission_id, reason="group grant")
    if scope:
        return UnsupportedGrant(id=permission_id, reason=f"{scope} link")
    return UnsupportedGrant(id=permission_id, reason="no grantee")


def is_reportable(permission: Permission) -> bool:
    """True iff the grant is to a named user or is an anonymous link."""
    return isinstance(permission, DirectUserGrant | AnonymousLinkGrant)


def normalize(permission: Permission) -> ReportablePermission | None:
    """Map a reportable grant to the platform shape; None for anything else."""
    if isinstance(permission, DirectUserGrant):
        return ReportablePermission(
            id=permission.id,
            type=PERMISSION_TYPE_USER,
            display_name=permission.user.display_name,
            user_id=permission.user.id,
            email=permission.user.email,
            metadata={"roles": list(permission.roles)},
        )
    if isinstance(permission, AnonymousLinkGrant):
        return ReportablePermission(
            id=permission.id,
            type=PERMISSION_TYPE_ANYONE,
            metadata={
                "sharedLinks": [permission.web_url] if permission.web_url else [],
                "roles": list(permission.roles),
            },
        )
    return None
