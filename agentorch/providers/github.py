"""GitHub REST API v3 provider."""

import asyncio
import logging
from typing import Any

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
from agentorch.storage import GITHUB_ACCOUNT, SERVICE, SecureStorage

logger = logging.getLogger(__name__)

BASE_URL = "https://api.github.com"
DEVICE_CODE_URL = "https://github.com/login/device/code"
TOKEN_URL = "https://github.com/login/oauth/access_token"
SCOPES = "repo,gist,read:user"


class GitHubProvider(GitProvider):
    type = ProviderType.GITHUB
    supports_device_flow = True

    def __init__(self, storage: SecureStorage, timeout: float = 30.0) -> None:
        self._storage = storage
        self._timeout = timeout
        self._headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    # Token storage

    async def save_token(self, token: str) -> None:
        await asyncio.to_thread(self._storage.set_password, SERVICE, GITHUB_ACCOUNT, token)

    async def get_token(self) -> str | None:
        return await asyncio.to_thread(self._storage.get_password, SERVICE, GITHUB_ACCOUNT)

    async def clear_token(self) -> None:
        await asyncio.to_thread(self._storage.delete_password, SERVICE, GITHUB_ACCOUNT)

    # Device flow

    async def start_device_flow(self, config: OAuthAppConfig) -> DeviceFlowInit:
        return await device_flow.request_device_code(
            "GitHub",
            DEVICE_CODE_URL,
            config,
            SCOPES,
            default_verification_url="https://github.com/login/device",
            default_expires_in=900,
            timeout=self._timeout,
        )

    async def poll_device_flow(self, config: OAuthAppConfig, init: DeviceFlowInit) -> str:
        return await device_flow.poll_for_token("GitHub", TOKEN_URL, config, init, timeout=self._timeout)

    # HTTP

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
        token: str | None = None,
    ) -> Any:
        token = token if token is not None else await self.get_token()
        headers = dict(self._headers)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        logger.debug("GitHub %s %s", method, path)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.request(method, f"{BASE_URL}{path}", headers=headers, json=json, params=params)
        raise_for_response("GitHub", response)
        return response.json()

    # User

    def _user_from_node(self, node: dict) -> GitUser:
        return GitUser(
            login=node["login"],
            name=node.get("name"),
            avatar_url=node.get("avatar_url") or "",
            email=node.get("email"),
            provider=ProviderType.GITHUB,
        )

    async def validate_token(self, token: str, extra: dict[str, str] | None = None) -> GitUser | None:
        try:
            user = self._user_from_node(await self._request("GET", "/user", token=token))
        except SESSION_CHECK_ERRORS as exc:
            logger.info("GitHub token rejected: %s", exc)
            return None
        await self.save_token(token)
        return user

    async def get_authenticated_user(self) -> GitUser | None:
        try:
            return self._user_from_node(await self._request("GET", "/user"))
        except SESSION_CHECK_ERRORS as exc:
            logger.debug("GitHub session check failed: %s", exc)
            return None

    # Repositories

    async def list_repositories(self) -> list[GitRepo]:
        nodes = await self._request("GET", "/user/repos", params={"sort": "updated", "per_page": "30"})
        return [
            GitRepo(
                id=node["id"],
                name=node["name"],
                full_name=node["full_name"],
                private=node["private"],
                description=node.get("description"),
                html_url=node["html_url"],
                default_branch=node.get("default_branch") or "main",
                provider=ProviderType.GITHUB,
            )
            for node in nodes
        ]

    async def _branch_sha(self, owner: str, repo: str, branch: str) -> str | None:
        try:
            node = await self._request("GET", f"/repos/{owner}/{repo}/git/ref/heads/{branch}")
        except RemoteAPIError as exc:
            if exc.not_found:
                return None
            raise
        return node["object"]["sha"]

    async def _create_blob(self, owner: str, repo: str, content: str) -> str:
        node = await self._request(
            "POST", f"/repos/{owner}/{repo}/git/blobs", json={"content": content, "encoding": "utf-8"}
        )
        return node["sha"]

    async def push_files_to_branch(
        self,
        owner: str,
        repo: str,
        base_branch: str,
        new_branch: str,
        files: list[GitFileEntry],
        commit_message: str,
    ) -> None:
        """Commit ``files`` onto ``new_branch`` via the Git Data API (blobs → tree → commit → ref)."""
        base_sha = await self._branch_sha(owner, repo, base_branch)
        if base_sha is None:
            raise RemoteAPIError("GitHub", 404, f"Base branch '{base_branch}' not found in {owner}/{repo}")

        tree_items = []
        for entry in files:
            blob_sha = await self._create_blob(owner, repo, entry.content)
            tree_items.append({"path": entry.path, "mode": "100644", "type": "blob", "sha": blob_sha})

        tree = await self._request(
            "POST", f"/repos/{owner}/{repo}/git/trees", json={"base_tree": base_sha, "tree": tree_items}
        )
        commit = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/commits",
            json={"message": commit_message, "tree": tree["sha"], "parents": [base_sha]},
        )

        # No per-branch lock: concurrent pushes to the same branch are last-writer-wins
        if await self._branch_sha(owner, repo, new_branch) is not None:
            await self._request(
                "PATCH",
                f"/repos/{owner}/{repo}/git/refs/heads/{new_branch}",
                json={"sha": commit["sha"], "force": True},
            )
        else:
            await self._request(
                "POST",
                f"/repos/{owner}/{repo}/git/refs",
                json={"ref": f"refs/heads/{new_branch}", "sha": commit["sha"]},
            )
        logger.info("GitHub pushed %d file(s) to %s/%s@%s", len(files), owner, repo, new_branch)

    async def create_pull_request(self, options: GitPROptions) -> GitPRResult:
        node = await self._request(
            "POST",
            f"/repos/{options.owner}/{options.repo}/pulls",
            json={"title": options.title, "body": options.body, "head": options.head, "base": options.base},
        )
        return GitPRResult(number=node["number"], url=node["html_url"], title=node["title"])

    # Gists

    def _snippet_from_node(self, node: dict) -> GitSnippet:
        files = {
            name: SnippetFile(filename=f.get("filename") or name, content=f.get("content"))
            for name, f in (node.get("files") or {}).items()
        }
        owner = node.get("owner") or {}
        return GitSnippet(
            id=str(node["id"]),
            description=node.get("description") or "",
            html_url=node["html_url"],
            public=node.get("public", False),
            created_at=node.get("created_at") or "",
            updated_at=node.get("updated_at") or "",
            owner_login=owner.get("login") or "anonymous",
            files=files,
            provider=ProviderType.GITHUB,
        )

    async def list_marketplace_snippets(self) -> list[GitSnippet]:
        nodes = await self._request("GET", "/gists/public", params={"per_page": "50"})
        return [self._snippet_from_node(n) for n in nodes if MARKETPLACE_TAG in (n.get("description") or "")]

    async def get_snippet(self, snippet_id: str) -> GitSnippet:
        return self._snippet_from_node(await self._request("GET", f"/gists/{snippet_id}"))

    async def publish_snippet(self, description: str, files: list[GitSnippetFile], is_public: bool) -> GitSnippet:
        body = {
            "description": description,
            "public": is_public,
            "files": {f.filename: {"content": f.content} for f in files},
        }
        return self._snippet_from_node(await self._request("POST", "/gists", json=body))
