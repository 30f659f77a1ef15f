import hmac
from typing import Optional

from fastapi import Header, Request

from taco_wallet.config import Settings
from taco_wallet.container import ServiceContainer, build_container
from taco_wallet.errors import AuthenticationError


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def require_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(None, alias="x-api-key"),
) -> None:
    # An unset API_KEY locks every route rather than opening them.
    expected = get_settings(request).API_KEY
    if not expected or not x_api_key or not hmac.compare_digest(
        x_api_key.encode("utf-8"), expected.encode("utf-8")
    ):
        raise AuthenticationError("Unauthorized: Invalid API Key")


async def get_container(request: Request) -> ServiceContainer:
    """
    Return the app's ServiceContainer, building it on first use.

    Runs on the event loop and builds under app.state.container_lock, so
    concurrent first requests share one container.
    """
    state = request.app.state
    if state.container is not None:
        return state.container

    async with state.container_lock:
        if state.container is None:
            state.container = build_container(state.settings)
        return state.container
