"""Tests for the shared OAuth device flow state machine."""

import json

import pytest
from pytest_httpx import HTTPXMock

from agentorch.errors import DeviceFlowDeniedError, DeviceFlowTimeoutError, ErrorKind, RemoteAPIError
from agentorch.models import DeviceFlowInit, OAuthAppConfig
from agentorch.providers.device_flow import (
    GRANT_TYPE,
    DeviceFlowState,
    classify_token_response,
    poll_for_token,
    request_device_code,
)

DEVICE_URL = "https://example.test/login/device/code"
TOKEN_URL = "https://example.test/login/oauth/access_token"

_PENDING = {"error": "authorization_pending"}
_SLOW_DOWN = {"error": "slow_down"}


def _init(expires_in: float = 900, interval: float = 5) -> DeviceFlowInit:
    return DeviceFlowInit(
        device_code="dev-code-123",
        user_code="WDJB-MJHT",
        verification_url="https://example.test/login/device",
        expires_in=expires_in,
        interval=interval,
    )


class TestClassifyTokenResponse:
    def test_access_token_is_authorized(self) -> None:
        assert classify_token_response({"access_token": "gho_x"}) is DeviceFlowState.AUTHORIZED

    def test_pending(self) -> None:
        assert classify_token_response(_PENDING) is DeviceFlowState.PENDING

    def test_slow_down(self) -> None:
        assert classify_token_response(_SLOW_DOWN) is DeviceFlowState.SLOW_DOWN

    @pytest.mark.parametrize("error", ["access_denied", "expired_token", "unsupported_grant_type"])
    def test_other_errors_are_denied(self, error: str) -> None:
        assert classify_token_response({"error": error}) is DeviceFlowState.DENIED

    def test_empty_body_is_denied(self) -> None:
        assert classify_token_response({}) is DeviceFlowState.DENIED


class TestRequestDeviceCode:
    @pytest.mark.asyncio
    async def test_parses_response(self, httpx_mock: HTTPXMock, oauth_config: OAuthAppConfig) -> None:
        httpx_mock.add_response(
            url=DEVICE_URL,
            method="POST",
            json={
                "device_code": "dc",
                "user_code": "ABCD-EFGH",
                "verification_uri": "https://example.test/activate",
                "expires_in": 600,
                "interval": 10,
            },
        )
        init = await request_device_code(
            "GitHub",
            DEVICE_URL,
            oauth_config,
            "repo",
            default_verification_url="https://example.test/device",
            default_expires_in=900,
        )
        assert init.device_code == "dc"
        assert init.user_code == "ABCD-EFGH"
        assert init.verification_url == "https://example.test/activate"
        assert init.expires_in == 600
        assert init.interval == 10

        request = httpx_mock.get_requests()[0]
        assert json.loads(request.content) == {"client_id": "Iv1.test-client", "scope": "repo"}
        assert request.headers["Accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_missing_fields_use_defaults(self, httpx_mock: HTTPXMock, oauth_config: OAuthAppConfig) -> None:
        httpx_mock.add_response(url=DEVICE_URL, method="POST", json={"device_code": "dc", "user_code": "U"})
        init = await request_device_code(
            "GitLab",
            DEVICE_URL,
            oauth_config,
            "api",
            default_verification_url="https://example.test/device",
            default_expires_in=300,
        )
        assert init.verification_url == "https://example.test/device"
        assert init.expires_in == 300
        assert init.interval == 5

    @pytest.mark.asyncio
    async def test_http_error_raises(self, httpx_mock: HTTPXMock, oauth_config: OAuthAppConfig) -> None:
        httpx_mock.add_response(url=DEVICE_URL, method="POST", status_code=401, text="bad client")
        with pytest.raises(RemoteAPIError, match="GitHub 401: bad client"):
            await request_device_code(
                "GitHub",
                DEVICE_URL,
                oauth_config,
                "repo",
                default_verification_url="https://example.test/device",
                default_expires_in=900,
            )


class TestPollForToken:
    @pytest.mark.asyncio
    async def test_pending_then_slow_down_then_token(
        self, httpx_mock: HTTPXMock, oauth_config: OAuthAppConfig, fake_clock
    ) -> None:
        for body in (_PENDING, _PENDING, _SLOW_DOWN, {"access_token": "X", "token_type": "bearer"}):
            httpx_mock.add_response(url=TOKEN_URL, method="POST", json=body)

        token = await poll_for_token("GitHub", TOKEN_URL, oauth_config, _init())

        assert token == "X"
        assert fake_clock.sleeps == [5, 5, 5, 10]
        requests = httpx_mock.get_requests()
        assert len(requests) == 4
        assert json.loads(requests[0].content) == {
            "client_id": "Iv1.test-client",
            "device_code": "dev-code-123",
            "grant_type": GRANT_TYPE,
        }

    @pytest.mark.asyncio
    async def test_slow_down_is_cumulative(
        self, httpx_mock: HTTPXMock, oauth_config: OAuthAppConfig, fake_clock
    ) -> None:
        for body in (_SLOW_DOWN, _SLOW_DOWN, {"access_token": "X"}):
            httpx_mock.add_response(url=TOKEN_URL, method="POST", json=body)

        await poll_for_token("GitHub", TOKEN_URL, oauth_config, _init())

        assert fake_clock.sleeps == [5, 10, 15]

    @pytest.mark.asyncio
    async def test_pending_as_http_400_keeps_polling(
        self, httpx_mock: HTTPXMock, oauth_config: OAuthAppConfig, fake_clock
    ) -> None:
        httpx_mock.add_response(url=TOKEN_URL, method="POST", status_code=400, json=_PENDING)
        httpx_mock.add_response(url=TOKEN_URL, method="POST", json={"access_token": "glpat"})

        token = await poll_for_token("GitLab", TOKEN_URL, oauth_config, _init())

        assert token == "glpat"
        assert fake_clock.sleeps == [5, 5]

    @pytest.mark.asyncio
    async def test_times_out_when_user_never_authorizes(
        self, httpx_mock: HTTPXMock, oauth_config: OAuthAppConfig, fake_clock
    ) -> None:
        for _ in range(3):
            httpx_mock.add_response(url=TOKEN_URL, method="POST", json=_PENDING)

        with pytest.raises(DeviceFlowTimeoutError, match="GitHub OAuth timed out") as exc_info:
            await poll_for_token("GitHub", TOKEN_URL, oauth_config, _init(expires_in=12))

        assert exc_info.value.kind is ErrorKind.TIMEOUT
        assert fake_clock.sleeps == [5, 5, 5]

    @pytest.mark.asyncio
    async def test_access_denied(self, httpx_mock: HTTPXMock, oauth_config: OAuthAppConfig, fake_clock) -> None:
        httpx_mock.add_response(
            url=TOKEN_URL,
            method="POST",
            json={"error": "access_denied", "error_description": "The user has denied your application access."},
        )

        with pytest.raises(DeviceFlowDeniedError, match="GitHub OAuth denied: The user has denied") as exc_info:
            await poll_for_token("GitHub", TOKEN_URL, oauth_config, _init())

        assert exc_info.value.kind is ErrorKind.DENIED

    @pytest.mark.asyncio
    async def test_expired_token_error_is_denied(
        self, httpx_mock: HTTPXMock, oauth_config: OAuthAppConfig, fake_clock
    ) -> None:
        httpx_mock.add_response(url=TOKEN_URL, method="POST", json={"error": "expired_token"})

        with pytest.raises(DeviceFlowDeniedError, match="expired_token"):
            await poll_for_token("GitHub", TOKEN_URL, oauth_config, _init())

    @pytest.mark.asyncio
    async def test_non_json_error_raises_remote(
        self, httpx_mock: HTTPXMock, oauth_config: OAuthAppConfig, fake_clock
    ) -> None:
        httpx_mock.add_response(url=TOKEN_URL, method="POST", status_code=502, text="<html>Bad Gateway</html>")

        with pytest.raises(RemoteAPIError) as exc_info:
            await poll_for_token("GitHub", TOKEN_URL, oauth_config, _init())

        assert exc_info.value.status_code == 502
