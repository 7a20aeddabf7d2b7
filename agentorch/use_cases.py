"""Connection workflows the UI drives through the registry."""

import logging

from agentorch.errors import AuthenticationError
from agentorch.models import DeviceFlowInit, GitUser, OAuthAppConfig, ProviderType
from agentorch.registry import ProviderRegistry

logger = logging.getLogger(__name__)


def _oauth_config(registry: ProviderRegistry, provider_type: ProviderType) -> OAuthAppConfig:
    client_id = registry.get_client_id(provider_type)
    if not client_id:
        raise AuthenticationError(
            f"No OAuth App client_id configured for {provider_type.value}. "
            f"Run: agentorch set-client-id {provider_type.value} <client-id>"
        )
    return OAuthAppConfig(client_id=client_id)


async def start_device_flow(registry: ProviderRegistry, provider_type: ProviderType) -> DeviceFlowInit:
    config = _oauth_config(registry, provider_type)
    return await registry.get(provider_type).start_device_flow(config)


async def complete_device_flow(
    registry: ProviderRegistry,
    provider_type: ProviderType,
    init: DeviceFlowInit,
) -> GitUser:
    """Poll until authorized, store the token and return the signed-in user."""
    config = _oauth_config(registry, provider_type)
    provider = registry.get(provider_type)
    token = await provider.poll_device_flow(config, init)
    await provider.save_token(token)
    user = await provider.get_authenticated_user()
    if user is None:
        raise AuthenticationError("Token obtained but could not fetch user. Check the OAuth app scopes.")
    logger.info("Connected %s as %s", provider_type.value, user.login)
    return user


async def connect_with_token(
    registry: ProviderRegistry,
    provider_type: ProviderType,
    token: str,
    extra: dict[str, str] | None = None,
) -> GitUser:
    """Connect with a personal access token (or a Bitbucket App Password plus username)."""
    user = await registry.get(provider_type).validate_token(token, extra)
    if user is None:
        raise AuthenticationError(f"Invalid credentials for {provider_type.value}.")
    logger.info("Connected %s as %s", provider_type.value, user.login)
    return user


async def disconnect(registry: ProviderRegistry, provider_type: ProviderType) -> None:
    await registry.get(provider_type).clear_token()
