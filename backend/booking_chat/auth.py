from __future__ import annotations

from dataclasses import dataclass

from fastapi import Header, HTTPException


@dataclass(frozen=True)
class CurrentUser:
    user_id: str
    user_name: str | None = None


async def get_current_user(
    x_user_id: str | None = Header(default=None),
    x_user_name: str | None = Header(default=None),
) -> CurrentUser:
    """
    Resolve the caller's identity.

    Session validation happens upstream (gateway or auth middleware), which
    forwards the verified identity in ``X-User-Id``. Deployments with a
    different scheme override this dependency.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return CurrentUser(user_id=x_user_id, user_name=x_user_name)
