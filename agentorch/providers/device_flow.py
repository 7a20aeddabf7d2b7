"""OAuth 2.0 Device Authorization Grant (RFC 8628), shared by GitHub and GitLab."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum

import httpx

from agentorch.errors import DeviceFlowDeniedError, DeviceFlowTimeoutError, RemoteAPIError, raise_for_response
from agentorch.models import DeviceFlowInit, OAuthAppConfig

logger = logging.getLogger(__name__)

GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
SLOW_DOWN_INCREMENT = 5

_HEADERS = {"Accept": "application/json", "Content-Type": "application/json"}

# Looked up at call time so tests can swap in a fake clock
_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
_clock: Callable[[], float] = time.monotonic


class DeviceFlowState(str, Enum):
    INITIATED = "initiated"
    PENDING = "pending"
    SLOW_DOWN = "slow_down"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    EXPIRED = "expired"


def classify_token_response(data: dict) -> DeviceFlowState:
    """Map one token endpoint response to the next device flow state."""
    if data.get("access_token"):
        return DeviceFlowState.AUTHORIZED
    match data.get("error"):
        case "slow_down":
            return DeviceFlowState.SLOW_DOWN
        case "authorization_pending":
            return DeviceFlowState.PENDING
        case _:
            return DeviceFlowState.DENIED


async def request_device_code(
    provider: str,
    url: str,
    config: OAuthAppConfig,
    scope: str,
    *,
    default_verification_url: str,
    default_expires_in: float,
    default_interval: float = 5,
    timeout: float = 30.0,
) -> DeviceFlowInit:
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.post(url, headers=_HEADERS, json={"client_id": config.client_id, "scope": scope})
    raise_for_response(provider, response)
    data = response.json()
    logger.info("%s device flow started, expires in %ss", provider, data.get("expires_in"))
    return DeviceFlowInit(
        device_code=data["device_code"],
        user_code=data["user_code"],
        verification_url=data.get("verification_uri") or default_verification_url,
        expires_in=data.get("expires_in") or default_expires_in,
        interval=data.get("interval") or default_interval,
    )


async def _request_token(provider: str, url: str, config: OAuthAppConfig, device_code: str, timeout: float) -> dict:
    body = {"client_id": config.client_id, "device_code": device_code, "grant_type": GRANT_TYPE}
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.post(url, headers=_HEADERS, json=body)
    # Pending/slow_down arrive as HTTP 400 on GitLab, so the body decides, not the status
    try:
        data = response.json()
    except ValueError:
        raise_for_response(provider, response)
        raise RemoteAPIError(provider, response.status_code, response.text)
    if not isinstance(data, dict):
        raise RemoteAPIError(provider, response.status_code, response.text)
    return data


async def poll_for_token(
    provider: str,
    url: str,
    config: OAuthAppConfig,
    init: DeviceFlowInit,
    *,
    timeout: float = 30.0,
) -> str:
    """Poll the token endpoint until the grant is authorized, denied or expired.

    Waits ``init.interval`` seconds before every attempt; a ``slow_down``
    response permanently adds 5 seconds to the interval.
    """
    deadline = _clock() + init.expires_in
    interval = init.interval
    state = DeviceFlowState.INITIATED

    while _clock() < deadline:
        await _sleep(interval)
        data = await _request_token(provider, url, config, init.device_code, timeout)
        state = classify_token_response(data)
        logger.debug("%s device flow poll: %s", provider, state.value)

        if state is DeviceFlowState.AUTHORIZED:
            logger.info("%s device flow authorized", provider)
            return data["access_token"]
        if state is DeviceFlowState.SLOW_DOWN:
            interval += SLOW_DOWN_INCREMENT
            continue
        if state is DeviceFlowState.PENDING:
            continue

        reason = data.get("error_description") or data.get("error") or "unknown error"
        raise DeviceFlowDeniedError(f"{provider} OAuth denied: {reason}")

    state = DeviceFlowState.EXPIRED
    logger.info("%s device flow %s", provider, state.value)
    raise DeviceFlowTimeoutError(f"{provider} OAuth timed out: user did not complete authorization in time")
