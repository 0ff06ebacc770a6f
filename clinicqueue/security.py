# clinicqueue/security.py
"""Acting identity for queue requests.

Authentication happens upstream; the gateway forwards the verified caller as
``X-Actor-Role`` and ``X-Actor-Id``. These dependencies only read and check
that identity.
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from .schemas import Actor, ActorRole


async def get_current_actor(
    x_actor_role: Optional[str] = Header(None),
    x_actor_id: Optional[str] = Header(None),
) -> Actor:
    if not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing acting identity",
        )
    try:
        role = ActorRole(x_actor_role.lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown actor role '{x_actor_role}'",
        )
    if role != ActorRole.admin and not x_actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing actor id",
        )
    return Actor(role=role, id=x_actor_id)


def require_role(*allowed_roles: ActorRole):
    """Dependency factory: reject callers outside the given roles."""
    async def role_checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{actor.role.value}' cannot access this resource",
            )
        return actor
    return role_checker


require_doctor = require_role(ActorRole.doctor)
require_admin = require_role(ActorRole.admin)


async def get_doctor_id(actor: Actor = Depends(require_doctor)) -> int:
    try:
        return int(actor.id)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Doctor id must be numeric",
        )
