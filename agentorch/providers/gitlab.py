"""GitLab REST API v4 provider (gitlab.com or self-hosted)."""

import asyncio
import logging
from typing import Any
from urllib.parse import quote

import httpx

from agentorch.errors import SESSION_CHECK_ERRORS, RemoteAPIError, raise_for_response
from agentorch.models import (
    MARKETPLACE_TAG,
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
    SnippetFile,
)
from agentorch.providers import device_flow
from agentorch.providers.base import GitProvider
from agentorch.storage import GITLAB_ACCOUNT, SERVICE, SecureStorage

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://gitlab.com"
SCOPES = "api read_user"


def _encode(value: str) -> str:
    return quote(value, safe="")


class GitLabProvider(GitProvider):
    type = ProviderType.GITLAB
    supports_device_flow = True

    def __init__(self, storage: SecureStorage, base_url: str = DEFAULT_BASE_URL, timeout: float = 30.0) -> None:
        self._storage = storage
        self._timeout = timeout
        # Fixed for the adapter's lifetime; the registry rebuilds the adapter when it changes
        self.base_url = base_url.rstrip("/")
        self.api_url = f"{self.base_url}/api/v4"

    # Token storage

    async def save_token(self, token: str) -> None:
        await asyncio.to_thread(self._storage.set_password, SERVICE, GITLAB_ACCOUNT, token)

    async def get_token(self) -> str | None:
        return await asyncio.to_thread(self._storage.get_password, SERVICE, GITLAB_ACCOUNT)

    async def clear_token(self) -> None:
        await asyncio.to_thread(self._storage.delete_password, SERVICE, GITLAB_ACCOUNT)

    # Device flow

    async def start_device_flow(self, config: OAuthAppConfig) -> DeviceFlowInit:
        return await device_flow.request_device_code(
            "GitLab",
            f"{self.base_url}/oauth/authorize_device",
            config,
            SCOPES,
            default_verification_url=f"{self.base_url}/oauth/device",
            default_expires_in=300,
            timeout=self._timeout,
        )

    async def poll_device_flow(self, config: OAuthAppConfig, init: DeviceFlowInit) -> str:
        return await device_flow.poll_for_token(
            "GitLab", f"{self.base_url}/oauth/token", config, init, timeout=self._timeout
        )

    # HTTP

    async def _send(self, method: str, url: str, *, token: str | None = None, **kwargs: Any) -> httpx.Response:
        token = token if token is not None else await self.get_token()
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        logger.debug("GitLab %s %s", method, url)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.request(method, url, headers=headers, **kwargs)
        raise_for_response("GitLab", response)
        return response

    async def _request(self, method: str, path: str, *, token: str | None = None, **kwargs: Any) -> Any:
        response = await self._send(method, f"{self.api_url}{path}", token=token, **kwargs)
        return response.json()

    # User

    def _user_from_node(self, node: dict) -> GitUser:
        return GitUser(
            login=node["username"],
            name=node.get("name"),
            avatar_url=node.get("avatar_url") or "",
            email=node.get("email"),
            provider=ProviderType.GITLAB,
        )

    async def validate_token(self, token: str, extra: dict[str, str] | None = None) -> GitUser | None:
        try:
            user = self._user_from_node(await self._request("GET", "/user", token=token))
        except SESSION_CHECK_ERRORS as exc:
            logger.info("GitLab token rejected: %s", exc)
            return None
        await self.save_token(token)
        return user

    async def get_authenticated_user(self) -> GitUser | None:
        try:
            return self._user_from_node(await self._request("GET", "/user"))
        except SESSION_CHECK_ERRORS as exc:
            logger.debug("GitLab session check failed: %s", exc)
            return None

    # Repositories (GitLab "projects")

    async def list_repositories(self) -> list[GitRepo]:
        params = {"membership": "true", "order_by": "last_activity_at", "per_page": "30"}
        nodes = await self._request("GET", "/projects", params=params)
        return [
            GitRepo(
                id=node["id"],
                name=node["path"],
                full_name=node["path_with_namespace"],
                private=node.get("visibility") != "public",
                description=node.get("description"),
                html_url=node["web_url"],
                default_branch=node.get("default_branch") or "main",
                provider=ProviderType.GITLAB,
            )
            for node in nodes
        ]

    async def _branch_exists(self, project: str, branch: str) -> bool:
        try:
            await self._request("GET", f"/projects/{project}/repository/branches/{_encode(branch)}")
        except RemoteAPIError as exc:
            if exc.not_found:
                return False
            raise
        return True

    async def push_files_to_branch(
        self,
        owner: str,
        repo: str,
        base_branch: str,
        new_branch: str,
        files: list[GitFileEntry],
        commit_message: str,
    ) -> None:
        """Commit ``files`` with a single Commits API call.

        Commits onto ``new_branch`` when it exists, otherwise branches it off
        ``base_branch``. The existence check and the commit are two requests,
        so a branch created in between is not detected.
        """
        project = _encode(f"{owner}/{repo}")
        start_branch = new_branch if await self._branch_exists(project, new_branch) else base_branch
        body = {
            "branch": new_branch,
            "start_branch": start_branch,
            "commit_message": commit_message,
            "actions": [{"action": "create", "file_path": f.path, "content": f.content} for f in files],
        }
        await self._request("POST", f"/projects/{project}/repository/commits", json=body)
        logger.info("GitLab pushed %d file(s) to %s/%s@%s", len(files), owner, repo, new_branch)

    async def create_pull_request(self, options: GitPROptions) -> GitPRResult:
        project = _encode(f"{options.owner}/{options.repo}")
        node = await self._request(
            "POST",
            f"/projects/{project}/merge_requests",
            json={
                "title": options.title,
                "description": options.body,
                "source_branch": options.head,
                "target_branch": options.base,
            },
        )
        return GitPRResult(number=node["iid"], url=node["web_url"], title=node["title"])

    # Snippets

    def _snippet_from_node(self, node: dict, contents: dict[str, str] | None = None) -> GitSnippet:
        contents = contents or {}
        files = {}
        for f in node.get("files") or []:
            name = f.get("path") or f.get("file_name")
            files[name] = SnippetFile(filename=name, content=contents.get(name))
        # Older GitLab versions expose a single file_name instead of files[]
        if not files and node.get("file_name"):
            name = node["file_name"]
            files[name] = SnippetFile(filename=name, content=contents.get(name))
        author = node.get("author") or {}
        return GitSnippet(
            id=str(node["id"]),
            description=node.get("description") or node.get("title") or "",
            html_url=node.get("web_url") or "",
            public=node.get("visibility") == "public",
            created_at=node.get("created_at") or "",
            updated_at=node.get("updated_at") or "",
            owner_login=author.get("username") or "anonymous",
            files=files,
            provider=ProviderType.GITLAB,
        )

    async def list_marketplace_snippets(self) -> list[GitSnippet]:
        nodes = await self._request("GET", "/snippets/public", params={"per_page": "50"})
        return [
            self._snippet_from_node(n)
            for n in nodes
            if MARKETPLACE_TAG in (n.get("description") or "") or MARKETPLACE_TAG in (n.get("title") or "")
        ]

    async def get_snippet(self, snippet_id: str) -> GitSnippet:
        node = await self._request("GET", f"/snippets/{snippet_id}")
        contents = {}
        for f in node.get("files") or []:
            name = f.get("path") or f.get("file_name")
            if f.get("raw_url"):
                contents[name] = (await self._send("GET", f["raw_url"])).text
        return self._snippet_from_node(node, contents)

    async def publish_snippet(self, description: str, files: list[GitSnippetFile], is_public: bool) -> GitSnippet:
        body = {
            "title": description,
            "description": description,
            "visibility": "public" if is_public else "private",
            "files": [{"file_path": f.filename, "content": f.content} for f in files],
        }
        return self._snippet_from_node(await self._request("POST", "/snippets", json=body))
