"""Secure credential storage backed by the OS keychain."""

from abc import ABC, abstractmethod

import keyring
from keyring.errors import PasswordDeleteError

SERVICE = "agent-orchestrator"

GITHUB_ACCOUNT = "github-oauth-token"
GITLAB_ACCOUNT = "gitlab-oauth-token"
BITBUCKET_ACCOUNT = "bitbucket-credentials"

KNOWN_ACCOUNTS = (GITHUB_ACCOUNT, GITLAB_ACCOUNT, BITBUCKET_ACCOUNT)


class SecureStorage(ABC):
    @abstractmethod
    def set_password(self, service: str, account: str, password: str) -> None: ...

    @abstractmethod
    def get_password(self, service: str, account: str) -> str | None: ...

    @abstractmethod
    def delete_password(self, service: str, account: str) -> bool: ...

    @abstractmethod
    def find_credentials(self, service: str) -> list[tuple[str, str]]: ...


class KeyringSecureStorage(SecureStorage):
    def __init__(self, accounts: tuple[str, ...] = KNOWN_ACCOUNTS) -> None:
        self._accounts = accounts

    def set_password(self, service: str, account: str, password: str) -> None:
        keyring.set_password(service, account, password)

    def get_password(self, service: str, account: str) -> str | None:
        return keyring.get_password(service, account)

    def delete_password(self, service: str, account: str) -> bool:
        try:
            keyring.delete_password(service, account)
        except PasswordDeleteError:
            return False
        return True

    def find_credentials(self, service: str) -> list[tuple[str, str]]:
        # keyring has no enumeration API; probe the accounts this app writes
        result = []
        for account in self._accounts:
            password = keyring.get_password(service, account)
            if password is not None:
                result.append((account, password))
        return result
