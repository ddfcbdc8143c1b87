import logging
from typing import Annotated, Optional

from fastapi import Header, HTTPException, status

logger = logging.getLogger(__name__)


async def get_actor_id(
    x_actor_id: Annotated[Optional[str], Header(alias="X-Actor-Id")] = None,
) -> str:
    """
    Identity of the calling party.

    Authentication happens upstream; this service trusts the gateway to put
    the authenticated user id in ``X-Actor-Id``.
    """
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Actor-Id header")
    return x_actor_id.strip()
