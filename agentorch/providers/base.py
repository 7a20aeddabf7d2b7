"""Abstract interface every Git hosting provider implements."""

from abc import ABC, abstractmethod

from agentorch.models import (
    DeviceFlowInit,
    GitFileEntry,
    GitPROptions,
    GitPRResult,
    GitRepo,
    GitSnippet,
    GitSnippetFile,
    GitUser,
    OAuthAppConfig,
    ProviderType,
)


class GitProvider(ABC):
    type: ProviderType
    supports_device_flow: bool

    # Auth

    @abstractmethod
    async def start_device_flow(self, config: OAuthAppConfig) -> DeviceFlowInit: ...

    @abstractmethod
    async def poll_device_flow(self, config: OAuthAppConfig, init: DeviceFlowInit) -> str: ...

    @abstractmethod
    async def validate_token(self, token: str, extra: dict[str, str] | None = None) -> GitUser | None: ...

    @abstractmethod
    async def save_token(self, token: str) -> None: ...

    @abstractmethod
    async def get_token(self) -> str | None: ...

    @abstractmethod
    async def clear_token(self) -> None: ...

    @abstractmethod
    async def get_authenticated_user(self) -> GitUser | None: ...

    # Repositories

    @abstractmethod
    async def list_repositories(self) -> list[GitRepo]: ...

    @abstractmethod
    async def push_files_to_branch(
        self,
        owner: str,
        repo: str,
        base_branch: str,
        new_branch: str,
        files: list[GitFileEntry],
        commit_message: str,
    ) -> None: ...

    @abstractmethod
    async def create_pull_request(self, options: GitPROptions) -> GitPRResult: ...

    # Snippets / marketplace

    @abstractmethod
    async def list_marketplace_snippets(self) -> list[GitSnippet]: ...

    @abstractmethod
    async def get_snippet(self, snippet_id: str) -> GitSnippet: ...

    @abstractmethod
    async def publish_snippet(
        self,
        description: str,
        files: list[GitSnippetFile],
        is_public: bool,
    ) -> GitSnippet: ...
