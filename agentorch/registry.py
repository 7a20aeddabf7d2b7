"""Provider registry: owns one adapter per provider type plus the non-secret settings file.

OAuth client IDs and self-hosted base URLs live in ``git-providers.json``;
tokens stay in the secure credential store.
"""

import asyncio
import json
import logging
from pathlib import Path

from pydantic import ValidationError

from agentorch.errors import UnsupportedOperationError
from agentorch.models import ConnectedAccount, ProviderEntry, ProviderInfo, ProviderSettings, ProviderType
from agentorch.providers.base import GitProvider
from agentorch.providers.bitbucket import BitbucketProvider
from agentorch.providers.github import GitHubProvider
from agentorch.providers.gitlab import DEFAULT_BASE_URL, GitLabProvider
from agentorch.storage import SecureStorage

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "git-providers.json"

_PROVIDER_INFO = {
    ProviderType.GITHUB: ProviderInfo(
        type=ProviderType.GITHUB,
        label="GitHub",
        color="#24292f",
        docs_url="https://docs.github.com/en/developers/apps/building-oauth-apps",
        oauth_app_url="https://github.com/settings/apps/new",
        supports_device_flow=True,
    ),
    ProviderType.GITLAB: ProviderInfo(
        type=ProviderType.GITLAB,
        label="GitLab",
        color="#fc6d26",
        docs_url="https://docs.gitlab.com/ee/api/oauth2.html",
        oauth_app_url="https://gitlab.com/-/profile/applications",
        supports_device_flow=True,
    ),
    ProviderType.BITBUCKET: ProviderInfo(
        type=ProviderType.BITBUCKET,
        label="Bitbucket",
        color="#0052cc",
        docs_url="https://support.atlassian.com/bitbucket-cloud/docs/app-passwords/",
        oauth_app_url="https://bitbucket.org/account/settings/app-passwords/",
        supports_device_flow=False,
    ),
}


class ProviderRegistry:
    """Sole owner of adapter lifetimes.

    Settings are read-modify-written without locking. That is fine for one
    desktop user in one process; concurrent writers can lose updates.
    """

    def __init__(
        self,
        storage: SecureStorage,
        data_dir: Path,
        timeout: float = 30.0,
        gitlab_base_url: str = DEFAULT_BASE_URL,
    ) -> None:
        self._storage = storage
        self._timeout = timeout
        self.settings_path = Path(data_dir) / SETTINGS_FILENAME

        saved = self.load_settings().gitlab
        if saved and saved.base_url:
            gitlab_base_url = saved.base_url

        self._providers: dict[ProviderType, GitProvider] = {
            ProviderType.GITHUB: GitHubProvider(storage, timeout=timeout),
            ProviderType.GITLAB: GitLabProvider(storage, base_url=gitlab_base_url, timeout=timeout),
            ProviderType.BITBUCKET: BitbucketProvider(storage, timeout=timeout),
        }

    def get(self, provider_type: ProviderType) -> GitProvider:
        return self._providers[ProviderType(provider_type)]

    def all(self) -> list[GitProvider]:
        return list(self._providers.values())

    async def get_connected_accounts(self) -> list[ConnectedAccount]:
        """Return accounts for every provider with a live session.

        One adapter failing (even by raising) never hides the others.
        """
        providers = self.all()
        results = await asyncio.gather(*(p.get_authenticated_user() for p in providers), return_exceptions=True)
        accounts = []
        for provider, result in zip(providers, results):
            if isinstance(result, BaseException):
                logger.warning("%s session check raised: %s", provider.type.value, result)
                continue
            if result is not None:
                accounts.append(ConnectedAccount(type=provider.type, user=result))
        return accounts

    # Settings file

    def load_settings(self) -> ProviderSettings:
        """Read git-providers.json, returning empty settings if missing or unreadable."""
        if not self.settings_path.is_file():
            return ProviderSettings()
        try:
            with open(self.settings_path, encoding="utf-8") as fh:
                return ProviderSettings.model_validate(json.load(fh))
        except (json.JSONDecodeError, OSError, ValidationError) as exc:
            logger.warning("Failed to read %s: %s", self.settings_path, exc)
            return ProviderSettings()

    def save_settings(self, settings: ProviderSettings) -> None:
        self.settings_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.settings_path, "w", encoding="utf-8") as fh:
            json.dump(settings.to_json_dict(), fh, indent=2, ensure_ascii=False)
            fh.write("\n")

    def _update_entry(self, provider_type: ProviderType, **changes: str) -> ProviderSettings:
        settings = self.load_settings()
        current = settings.entry(provider_type) or ProviderEntry()
        updated = settings.model_copy(
            update={provider_type.value: current.model_copy(update=changes)},
        )
        self.save_settings(updated)
        return updated

    def get_client_id(self, provider_type: ProviderType) -> str | None:
        entry = self.load_settings().entry(ProviderType(provider_type))
        return entry.client_id if entry else None

    def set_client_id(self, provider_type: ProviderType, client_id: str) -> None:
        self._update_entry(ProviderType(provider_type), client_id=client_id)

    def set_base_url(self, provider_type: ProviderType, base_url: str) -> None:
        """Persist a self-hosted base URL and replace the adapter that bakes it in."""
        provider_type = ProviderType(provider_type)
        if provider_type is not ProviderType.GITLAB:
            raise UnsupportedOperationError(f"{provider_type.value} does not support a custom base URL")
        self._update_entry(provider_type, base_url=base_url)
        self._providers[ProviderType.GITLAB] = GitLabProvider(self._storage, base_url=base_url, timeout=self._timeout)
        logger.info("GitLab provider now targets %s", base_url)

    @staticmethod
    def get_provider_info(provider_type: ProviderType) -> ProviderInfo:
        return _PROVIDER_INFO[ProviderType(provider_type)]
