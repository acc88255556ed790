"""Tests for immutable session snapshots."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from pixo_sync.errors import GatewayError
from pixo_sync.models import Profile
from pixo_sync.session import UserSession

from tests.conftest import ME

AUTH_RESPONSE = {
    "access_token": "jwt-1",
    "refresh_token": "refresh-1",
    "expires_in": 3600,
    "token_type": "bearer",
    "user": {"id": ME, "email": "me@example.com"},
}


def make_gateway() -> MagicMock:
    gateway = MagicMock()
    gateway.sign_in_with_password = AsyncMock(return_value=AUTH_RESPONSE)
    gateway.refresh_session = AsyncMock(
        return_value={**AUTH_RESPONSE, "access_token": "jwt-2", "refresh_token": "refresh-2"}
    )
    gateway.get_profile = AsyncMock(return_value=Profile(id=ME, username="me"))
    return gateway


def test_anonymous_is_signed_out():
    session = UserSession.anonymous()
    assert not session.is_signed_in
    assert session.access_token is None


def test_session_is_frozen(session):
    with pytest.raises(ValidationError):
        session.user_id = "someone-else"


def test_from_auth_response_requires_user_and_token():
    with pytest.raises(GatewayError):
        UserSession.from_auth_response({"access_token": "jwt"})
    with pytest.raises(GatewayError):
        UserSession.from_auth_response({"user": {"id": ME}})


@pytest.mark.asyncio
async def test_sign_in_authorizes_gateway_and_loads_profile():
    gateway = make_gateway()

    session = await UserSession.sign_in(gateway, "me@example.com", "secret")

    assert session.is_signed_in
    assert session.user_id == ME
    assert session.profile.username == "me"
    gateway.set_access_token.assert_called_once_with("jwt-1")


@pytest.mark.asyncio
async def test_refresh_returns_new_snapshot(session):
    gateway = make_gateway()
    gateway.get_profile.return_value = Profile(id=ME, username="renamed")

    refreshed = await session.refresh(gateway)

    assert refreshed is not session
    assert refreshed.profile.username == "renamed"
    assert session.profile.username == "me"


@pytest.mark.asyncio
async def test_refresh_keeps_profile_on_error(session):
    gateway = make_gateway()
    gateway.get_profile.side_effect = GatewayError(500, message="down")

    assert await session.refresh(gateway) is session


@pytest.mark.asyncio
async def test_refresh_signed_out_is_noop():
    gateway = make_gateway()
    anonymous = UserSession.anonymous()

    assert await anonymous.refresh(gateway) is anonymous
    gateway.get_profile.assert_not_called()


@pytest.mark.asyncio
async def test_renew_swaps_tokens_and_keeps_profile(session):
    gateway = make_gateway()

    renewed = await session.renew(gateway)

    assert renewed.access_token == "jwt-2"
    assert renewed.refresh_token == "refresh-2"
    assert renewed.profile == session.profile
    gateway.refresh_session.assert_awaited_once_with("refresh-token")
    gateway.set_access_token.assert_called_once_with("jwt-2")


@pytest.mark.asyncio
async def test_renew_without_refresh_token_raises():
    with pytest.raises(GatewayError):
        await UserSession(user_id=ME).renew(make_gateway())
