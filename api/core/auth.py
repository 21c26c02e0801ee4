"""Requester context resolution.

The upstream gateway authenticates the session and forwards the resolved
identity as headers:

- ``X-User-Id``: authenticated user id (required)
- ``X-User-Role``: role string (unrecognized roles get the most
  restrictive access)
- ``X-Organization-Id``: the requester's current organization

The context is resolved once per request and passed explicitly to every
service call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from core.logger import bind_contextvars
from core.wide_event import set_wide_event_fields

USER_ID_HEADER = "X-User-Id"
ROLE_HEADER = "X-User-Role"
ORGANIZATION_HEADER = "X-Organization-Id"

_MAX_HEADER_LENGTH = 255


@dataclass(frozen=True, slots=True)
class Requester:
    """Identity, role and organization of the caller."""

    user_id: str
    role: str
    organization_id: str | None = None


def _header(request: Request, name: str) -> str | None:
    value = request.headers.get(name)
    if value is None:
        return None
    value = value.strip()
    if not value or len(value) > _MAX_HEADER_LENGTH:
        return None
    return value


def get_requester_from_request(request: Request) -> Requester | None:
    """Build the requester from gateway headers, or None when absent."""
    user_id = _header(request, USER_ID_HEADER)
    if not user_id:
        return None

    role = (_header(request, ROLE_HEADER) or "").lower()
    organization_id = _header(request, ORGANIZATION_HEADER)
    return Requester(user_id=user_id, role=role, organization_id=organization_id)


def require_requester(request: Request) -> Requester:
    """Raises 401 if no identity was forwarded. Sets request.state.requester_id."""
    requester = get_requester_from_request(request)
    if requester is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    request.state.requester_id = requester.user_id
    set_wide_event_fields(
        requester_id=requester.user_id,
        requester_role=requester.role,
        requester_organization_id=requester.organization_id,
    )
    bind_contextvars(requester_id=requester.user_id)
    return requester


CurrentRequester = Annotated[Requester, Depends(require_requester)]
