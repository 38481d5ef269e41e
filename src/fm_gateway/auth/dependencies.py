"""FastAPI dependency: get_actor_id.

Authentication happens upstream: the auth gateway verifies the caller and
forwards the user id in the X-Actor-Id header. This service trusts it.

Usage in any protected router:
    from src.fm_gateway.auth.dependencies import get_actor_id

    @router.get("/protected")
    async def protected(actor_id: str = Depends(get_actor_id)):
        ...
"""

from fastapi import Header

from src.fm_common.errors import UnauthenticatedError

ACTOR_HEADER = "X-Actor-Id"


async def get_actor_id(
    x_actor_id: str | None = Header(None, alias=ACTOR_HEADER),
) -> str:
    """Return the acting user id. Raises UnauthenticatedError (401) when absent or blank."""
    if x_actor_id is None or not x_actor_id.strip():
        raise UnauthenticatedError()
    return x_actor_id.strip()
