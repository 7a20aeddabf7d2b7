"""Shared pydantic models: the contract between providers, the registry and main.py."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

MARKETPLACE_TAG = "[agent-orchestrator]"


class ProviderType(str, Enum):
    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"


class GitUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    login: str  # unique handle within the provider
    name: str | None = None
    avatar_url: str = ""
    email: str | None = None
    provider: ProviderType


class GitRepo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int | str  # provider-native: numeric for GitHub/GitLab, uuid for Bitbucket
    name: str
    full_name: str  # owner/repo or workspace/slug
    private: bool
    description: str | None = None
    html_url: str
    default_branch: str
    provider: ProviderType


class GitPROptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner: str  # workspace for Bitbucket
    repo: str
    title: str
    body: str = ""
    head: str  # source branch
    base: str  # target branch


class GitPRResult(BaseModel):
    """Returned by create_pull_request. number is the GitHub number, GitLab iid or Bitbucket id."""

    model_config = ConfigDict(frozen=True)

    number: int
    url: str
    title: str


class GitFileEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    content: str


class GitSnippetFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: str
    content: str


class SnippetFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: str
    content: str | None = None  # None when the listing endpoint omits bodies


class GitSnippet(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    description: str
    html_url: str
    public: bool
    created_at: str
    updated_at: str
    owner_login: str
    files: dict[str, SnippetFile] = {}
    provider: ProviderType


class DeviceFlowInit(BaseModel):
    """RFC 8628 device authorization state. Consumed once by poll_device_flow, never stored."""

    model_config = ConfigDict(frozen=True)

    device_code: str
    user_code: str
    verification_url: str
    expires_in: float  # seconds until device_code expires
    interval: float  # minimum seconds between polls


class OAuthAppConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    client_id: str


class BitbucketCredentials(BaseModel):
    """Stored as JSON in the credential store; Basic auth needs both fields."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    username: str
    app_password: str = Field(alias="appPassword")


class ProviderEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: str | None = Field(default=None, alias="clientId")
    base_url: str | None = Field(default=None, alias="baseUrl")


class ProviderSettings(BaseModel):
    """Non-secret per-provider settings, persisted as one JSON document."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    github: ProviderEntry | None = None
    gitlab: ProviderEntry | None = None
    bitbucket: ProviderEntry | None = None

    def entry(self, provider_type: ProviderType) -> ProviderEntry | None:
        return getattr(self, provider_type.value)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ProviderType
    label: str
    color: str
    docs_url: str
    oauth_app_url: str
    supports_device_flow: bool


class ConnectedAccount(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ProviderType
    user: GitUser
