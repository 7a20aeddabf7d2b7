"""Shared test fixtures."""

import threading

import pytest

from agentorch.models import DeviceFlowInit, GitUser, OAuthAppConfig, ProviderType
from agentorch.providers import device_flow
from agentorch.storage import SecureStorage


class InMemorySecureStorage(SecureStorage):
    def __init__(self) -> None:
        self.items: dict[tuple[str, str], str] = {}
        self.threads: set[int] = set()  # idents of the threads that touched the store

    def set_password(self, service: str, account: str, password: str) -> None:
        self.threads.add(threading.get_ident())
        self.items[(service, account)] = password

    def get_password(self, service: str, account: str) -> str | None:
        self.threads.add(threading.get_ident())
        return self.items.get((service, account))

    def delete_password(self, service: str, account: str) -> bool:
        self.threads.add(threading.get_ident())
        return self.items.pop((service, account), None) is not None

    def find_credentials(self, service: str) -> list[tuple[str, str]]:
        return [(account, pw) for (svc, account), pw in self.items.items() if svc == service]


class FakeClock:
    """Monotonic clock that only advances when the code under test sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def storage() -> InMemorySecureStorage:
    return InMemorySecureStorage()


@pytest.fixture
def fake_clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    clock = FakeClock()
    monkeypatch.setattr(device_flow, "_sleep", clock.sleep)
    monkeypatch.setattr(device_flow, "_clock", clock)
    return clock


@pytest.fixture
def oauth_config() -> OAuthAppConfig:
    return OAuthAppConfig(client_id="Iv1.test-client")


@pytest.fixture
def device_init() -> DeviceFlowInit:
    return DeviceFlowInit(
        device_code="dev-code-123",
        user_code="WDJB-MJHT",
        verification_url="https://github.com/login/device",
        expires_in=900,
        interval=5,
    )


@pytest.fixture
def github_user() -> GitUser:
    return GitUser(
        login="octocat",
        name="The Octocat",
        avatar_url="https://github.com/images/error/octocat.png",
        email="octocat@github.com",
        provider=ProviderType.GITHUB,
    )
