"""Bitbucket Cloud REST API 2.0 provider.

Auth is an App Password paired with the account username (Basic auth);
Bitbucket has no Device Flow. The credential is stored as a JSON
``{username, appPassword}`` document because every request needs both.
"""

import asyncio
import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from agentorch.errors import (
    SESSION_CHECK_ERRORS,
    AuthenticationError,
    UnsupportedOperationError,
    raise_for_response,
)
from agentorch.models import (
    MARKETPLACE_TAG,
    BitbucketCredentials,
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
from agentorch.providers.base import GitProvider
from agentorch.storage import BITBUCKET_ACCOUNT, SERVICE, SecureStorage

logger = logging.getLogger(__name__)

BASE_URL = "https://api.bitbucket.org/2.0"


class BitbucketProvider(GitProvider):
    type = ProviderType.BITBUCKET
    supports_device_flow = False

    def __init__(self, storage: SecureStorage, timeout: float = 30.0) -> None:
        self._storage = storage
        self._timeout = timeout

    # Credential storage

    async def save_token(self, token: str) -> None:
        # token is the serialized {username, appPassword} document
        await asyncio.to_thread(self._storage.set_password, SERVICE, BITBUCKET_ACCOUNT, token)

    async def get_token(self) -> str | None:
        return await asyncio.to_thread(self._storage.get_password, SERVICE, BITBUCKET_ACCOUNT)

    async def clear_token(self) -> None:
        await asyncio.to_thread(self._storage.delete_password, SERVICE, BITBUCKET_ACCOUNT)

    async def _get_credentials(self) -> BitbucketCredentials | None:
        raw = await self.get_token()
        if not raw:
            return None
        try:
            return BitbucketCredentials.model_validate_json(raw)
        except ValidationError:
            logger.warning("Stored Bitbucket credential is not a {username, appPassword} document")
            return None

    # Device flow

    async def start_device_flow(self, config: OAuthAppConfig) -> DeviceFlowInit:
        raise UnsupportedOperationError("Bitbucket does not support Device Flow. Use an App Password instead.")

    async def poll_device_flow(self, config: OAuthAppConfig, init: DeviceFlowInit) -> str:
        raise UnsupportedOperationError("Bitbucket does not support Device Flow.")

    # HTTP

    async def _send(
        self,
        method: str,
        url: str,
        *,
        credentials: BitbucketCredentials | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        credentials = credentials or await self._get_credentials()
        auth = (credentials.username, credentials.app_password) if credentials else None
        logger.debug("Bitbucket %s %s", method, url)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.request(method, url, headers={"Accept": "application/json"}, auth=auth, **kwargs)
        raise_for_response("Bitbucket", response)
        return response

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._send(method, f"{BASE_URL}{path}", **kwargs)
        return response.json()

    # User

    def _user_from_node(self, node: dict) -> GitUser:
        avatar = ((node.get("links") or {}).get("avatar") or {}).get("href") or ""
        return GitUser(
            login=node.get("username") or node["nickname"],
            name=node.get("display_name"),
            avatar_url=avatar,
            email=node.get("email"),
            provider=ProviderType.BITBUCKET,
        )

    async def validate_token(self, token: str, extra: dict[str, str] | None = None) -> GitUser | None:
        username = (extra or {}).get("username")
        if not username:
            raise AuthenticationError("Bitbucket requires a username alongside the App Password")
        credentials = BitbucketCredentials(username=username, app_password=token)
        try:
            user = self._user_from_node(await self._request("GET", "/user", credentials=credentials))
        except SESSION_CHECK_ERRORS as exc:
            logger.info("Bitbucket app password rejected for %s: %s", username, exc)
            return None
        await self.save_token(credentials.model_dump_json(by_alias=True))
        return user

    async def get_authenticated_user(self) -> GitUser | None:
        credentials = await self._get_credentials()
        if credentials is None:
            return None
        try:
            user = self._user_from_node(await self._request("GET", "/user", credentials=credentials))
        except SESSION_CHECK_ERRORS as exc:
            logger.debug("Bitbucket session check failed: %s", exc)
            return None
        return user

    # Repositories

    async def _resolve_username(self, credentials: BitbucketCredentials) -> str | None:
        """Repository listing is scoped by username in the URL path.

        The username stored with the credential always belongs to it; the API
        is only asked when that field is empty.
        """
        if credentials.username:
            return credentials.username
        user = await self.get_authenticated_user()
        return user.login if user else None

    async def list_repositories(self) -> list[GitRepo]:
        credentials = await self._get_credentials()
        if credentials is None:
            return []
        username = await self._resolve_username(credentials)
        if not username:
            return []
        params = {"role": "member", "pagelen": "30", "sort": "-updated_on"}
        data = await self._request("GET", f"/repositories/{username}", params=params, credentials=credentials)
        return [
            GitRepo(
                id=node["uuid"],
                name=node["slug"],
                full_name=node["full_name"],
                private=node.get("is_private", True),
                description=node.get("description") or None,
                html_url=((node.get("links") or {}).get("html") or {}).get("href") or "",
                default_branch=(node.get("mainbranch") or {}).get("name") or "main",
                provider=ProviderType.BITBUCKET,
            )
            for node in data.get("values") or []
        ]

    async def push_files_to_branch(
        self,
        owner: str,
        repo: str,
        base_branch: str,
        new_branch: str,
        files: list[GitFileEntry],
        commit_message: str,
    ) -> None:
        """Create ``new_branch`` off ``base_branch`` with one multipart src upload."""
        branch_path = f"/repositories/{owner}/{repo}/refs/branches/{quote(base_branch, safe='')}"
        branch = await self._request("GET", branch_path)
        base_hash = (branch.get("target") or {}).get("hash")

        form = {"message": commit_message, "branch": new_branch}
        if base_hash:
            form["parents"] = base_hash
        uploads = [(f.path, (f.path, f.content.encode("utf-8"), "text/plain")) for f in files]

        await self._send("POST", f"{BASE_URL}/repositories/{owner}/{repo}/src", data=form, files=uploads)
        logger.info("Bitbucket pushed %d file(s) to %s/%s@%s", len(files), owner, repo, new_branch)

    async def create_pull_request(self, options: GitPROptions) -> GitPRResult:
        node = await self._request(
            "POST",
            f"/repositories/{options.owner}/{options.repo}/pullrequests",
            json={
                "title": options.title,
                "description": options.body,
                "source": {"branch": {"name": options.head}},
                "destination": {"branch": {"name": options.base}},
            },
        )
        url = ((node.get("links") or {}).get("html") or {}).get("href") or ""
        return GitPRResult(number=node["id"], url=url, title=node["title"])

    # Snippets

    def _snippet_from_node(self, node: dict, contents: dict[str, str] | None = None) -> GitSnippet:
        contents = contents or {}
        owner = node.get("owner") or {}
        owner_login = owner.get("username") or owner.get("nickname") or "anonymous"
        workspace = (node.get("workspace") or {}).get("slug") or owner.get("username")
        # Snippets live under /snippets/{workspace}/{id}; keep the id addressable on its own
        snippet_id = str(node["id"])
        if workspace and "/" not in snippet_id:
            snippet_id = f"{workspace}/{snippet_id}"
        return GitSnippet(
            id=snippet_id,
            description=node.get("title") or "",
            html_url=((node.get("links") or {}).get("html") or {}).get("href") or "",
            public=not node.get("is_private", False),
            created_at=node.get("created_on") or "",
            updated_at=node.get("updated_on") or "",
            owner_login=owner_login,
            files={name: SnippetFile(filename=name, content=contents.get(name)) for name in node.get("files") or {}},
            provider=ProviderType.BITBUCKET,
        )

    async def list_marketplace_snippets(self) -> list[GitSnippet]:
        data = await self._request("GET", "/snippets", params={"role": "member", "pagelen": "50"})
        return [
            self._snippet_from_node(n) for n in data.get("values") or [] if MARKETPLACE_TAG in (n.get("title") or "")
        ]

    async def get_snippet(self, snippet_id: str) -> GitSnippet:
        node = await self._request("GET", f"/snippets/{snippet_id}")
        contents = {}
        for name, meta in (node.get("files") or {}).items():
            href = (((meta or {}).get("links") or {}).get("self") or {}).get("href")
            if href:
                contents[name] = (await self._send("GET", href)).text
        return self._snippet_from_node(node, contents)

    async def publish_snippet(self, description: str, files: list[GitSnippetFile], is_public: bool) -> GitSnippet:
        form = {"title": description, "is_private": "false" if is_public else "true"}
        uploads = [("file", (f.filename, f.content.encode("utf-8"), "text/plain")) for f in files]
        response = await self._send("POST", f"{BASE_URL}/snippets", data=form, files=uploads)
        return self._snippet_from_node(response.json())
