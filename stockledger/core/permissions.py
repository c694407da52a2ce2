from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from stockledger.core.security_current import Actor, get_current_actor


def require_roles(*allowed_roles: str) -> Callable[[Actor], Actor]:
    normalized_allowed = {role.strip().lower() for role in allowed_roles if role.strip()}
    if not normalized_allowed:
        raise ValueError("At least one allowed role is required")

    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in normalized_allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role for this action",
            )
        return actor

    return dependency


def can_override_stock_floor(actor: Actor) -> bool:
    return actor.role == "admin"
