"""Identity verification for bearer credentials.

The access gate only needs ``verify(credential) -> User``. Two verifiers are
provided: fixed sentinel tokens for local setups and kiosks under test, and
LINE ID-token verification for the LINE mini-app front end.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, Protocol

import httpx

from queueline.core.config import Settings

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Supported roles."""

    ADMIN = "admin"
    USER = "user"


class User:
    """Simple representation of an authenticated user."""

    def __init__(self, user_id: str, roles: tuple[Role, ...]):
        self.user_id = user_id
        self.roles = roles

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return self.has_role(Role.ADMIN)

    def __repr__(self) -> str:
        return f"User(user_id={self.user_id!r}, roles={self.roles!r})"


class IdentityError(RuntimeError):
    """Base error raised by identity verifiers."""


class InvalidCredentialsError(IdentityError):
    """Raised when a credential is rejected."""


class IdentityProviderError(IdentityError):
    """Raised when the identity provider cannot be reached or misbehaves."""


class IdentityVerifier(Protocol):
    async def verify(self, credential: str) -> User:
        ...

    async def close(self) -> None:
        ...


class SentinelTokenVerifier:
    """Map a fixed set of tokens to known users and reject everything else."""

    def __init__(self, token_map: dict[str, tuple[str, tuple[Role, ...]]]) -> None:
        self._token_map = dict(token_map)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SentinelTokenVerifier":
        return cls(
            {
                settings.sentinel_user_token: (settings.sentinel_user_id, (Role.USER,)),
                settings.sentinel_admin_token: (settings.sentinel_admin_id, (Role.ADMIN, Role.USER)),
            }
        )

    async def verify(self, credential: str) -> User:
        if credential not in self._token_map:
            raise InvalidCredentialsError("Unauthorized: Invalid token")
        user_id, roles = self._token_map[credential]
        return User(user_id=user_id, roles=roles)

    async def close(self) -> None:
        return None


class LineIdTokenVerifier:
    """Verify LINE ID tokens against the LINE Login verify endpoint.

    The ``sub`` claim becomes the user id. Admin rights are granted to the
    user ids listed in ``admin_user_ids``.
    """

    def __init__(
        self,
        *,
        channel_id: str,
        verify_url: str,
        admin_user_ids: Iterable[str] = (),
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._channel_id = channel_id
        self._verify_url = verify_url
        self._admin_user_ids = frozenset(admin_user_ids)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def verify(self, credential: str) -> User:
        try:
            response = await self._client.post(
                self._verify_url,
                data={"id_token": credential, "client_id": self._channel_id},
            )
        except httpx.HTTPError as exc:
            logger.exception("LINE token verification request failed")
            raise IdentityProviderError("Identity provider is unavailable") from exc

        if response.status_code in (400, 401):
            raise InvalidCredentialsError("Unauthorized: Invalid token")
        if response.status_code >= 400:
            logger.error("LINE token verification returned %s", response.status_code)
            raise IdentityProviderError("Identity provider is unavailable")

        try:
            claims = response.json()
        except ValueError as exc:
            raise IdentityProviderError("Identity provider returned an invalid response") from exc

        subject = claims.get("sub") if isinstance(claims, dict) else None
        if not subject:
            raise InvalidCredentialsError("Unauthorized: Invalid token")

        roles: tuple[Role, ...] = (Role.USER,)
        if subject in self._admin_user_ids:
            roles = (Role.ADMIN, Role.USER)
        return User(user_id=str(subject), roles=roles)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_identity_verifier(settings: Settings) -> IdentityVerifier:
    """Return the verifier selected by ``settings.auth_mode``."""

    mode = settings.auth_mode.lower()
    if mode == "sentinel":
        return SentinelTokenVerifier.from_settings(settings)
    if mode == "line":
        if not settings.line_channel_id:
            raise ValueError("line_channel_id must be set when auth_mode is 'line'")
        return LineIdTokenVerifier(
            channel_id=settings.line_channel_id,
            verify_url=settings.line_verify_url,
            admin_user_ids=settings.admin_user_ids,
            timeout=settings.line_verify_timeout,
        )
    raise ValueError(f"Unsupported auth_mode: {settings.auth_mode}")
