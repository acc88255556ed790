"""Immutable user session snapshots.

A ``UserSession`` is passed explicitly into every controller. Nothing global
holds the signed-in user; refreshing produces a new snapshot rather than
mutating the one controllers already hold.

Example:
    >>> session = await UserSession.sign_in(gateway, "mia@example.com", "secret")
    >>> session.is_signed_in
    True
    >>> session = await session.refresh(gateway)   # new snapshot, new profile
"""

from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict

from pixo_sync.errors import GatewayError, PixoSyncError
from pixo_sync.logging import logger
from pixo_sync.models import Profile


class UserSession(BaseModel):
    """Snapshot of who is signed in.

    Attributes:
        user_id: Auth user id (None when signed out)
        email: Sign-in email
        access_token: JWT used for authenticated requests
        refresh_token: Token exchanged for a new access token
        profile: Public profile row, if it could be fetched
    """

    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = None
    email: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    profile: Optional[Profile] = None

    @classmethod
    def anonymous(cls) -> "UserSession":
        """The signed-out snapshot."""
        return cls()

    @property
    def is_signed_in(self) -> bool:
        return self.user_id is not None

    @classmethod
    def from_auth_response(cls, data: dict[str, Any]) -> "UserSession":
        """Build a snapshot from a GoTrue token response."""
        user = data.get("user") or {}
        if not user.get("id") or not data.get("access_token"):
            raise GatewayError(401, message="Auth response carried no user or token")
        return cls(
            user_id=user["id"],
            email=user.get("email"),
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
        )

    @classmethod
    async def sign_in(cls, gateway: Any, email: str, password: str) -> "UserSession":
        """Sign in with email/password and load the profile.

        The gateway is switched to act as the new user.

        Raises:
            GatewayError: If the credentials are rejected
        """
        session = cls.from_auth_response(await gateway.sign_in_with_password(email, password))
        session.authorize(gateway)
        logger.info(f"Signed in as {session.user_id}")
        return await session.refresh(gateway)

    def authorize(self, gateway: Any) -> None:
        """Point the gateway at this session's token (anon when signed out)."""
        gateway.set_access_token(self.access_token)

    async def refresh(self, gateway: Any) -> "UserSession":
        """Return a new snapshot with a re-fetched profile.

        Profile fetch errors are logged and the previous profile is kept.
        """
        if not self.is_signed_in:
            return self
        try:
            profile = await gateway.get_profile(self.user_id)
        except (PixoSyncError, httpx.HTTPError) as exc:
            logger.error(f"Error fetching profile: {exc}")
            return self
        return self.model_copy(update={"profile": profile})

    async def renew(self, gateway: Any) -> "UserSession":
        """Exchange the refresh token for a new token pair.

        Raises:
            GatewayError: If there is no refresh token or it was rejected
        """
        if not self.refresh_token:
            raise GatewayError(401, message="No refresh token to renew with")
        renewed = self.from_auth_response(await gateway.refresh_session(self.refresh_token))
        renewed = renewed.model_copy(update={"profile": self.profile})
        renewed.authorize(gateway)
        return renewed


__all__ = ["UserSession"]
