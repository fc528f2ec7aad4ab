"""
Shared test helpers.
"""

from backend.app.core.jwt import create_access_token
from backend.app.domain.shipments.state_machine import Actor
from backend.app.models.user import User

CUSTOMER_MOBILE = "919811112222"


def actor_for(user: User) -> Actor:
    return Actor(user_id=user.id, role=user.role, username=user.external_id)


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": user.external_id, "user_id": user.id, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}
