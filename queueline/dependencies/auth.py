from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from queueline.security.identity import (
    IdentityProviderError,
    IdentityVerifier,
    InvalidCredentialsError,
    Role,
    User,
)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_identity_verifier(request: Request) -> IdentityVerifier:
    verifier = getattr(request.app.state, "identity_verifier", None)
    if verifier is None:
        raise HTTPException(status_code=503, detail="Identity provider is not configured")
    return verifier


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
    verifier: Annotated[IdentityVerifier, Depends(get_identity_verifier)],
) -> User:
    """Resolve the bearer credential into a user through the configured verifier."""

    cached = getattr(request.state, "user", None)
    if isinstance(cached, User):
        return cached

    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Unauthorized: Missing or invalid token")

    try:
        user = await verifier.verify(credentials.credentials)
    except InvalidCredentialsError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except IdentityProviderError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    request.state.user = user
    return user


def role_required(role: Role) -> Callable[[User], User]:
    """Dependency factory ensuring the current user has the requested role."""

    async def dependency(user: Annotated[User, Depends(get_current_user)]) -> User:
        if not user.has_role(role):
            raise HTTPException(status_code=403, detail=f"Forbidden: {role.value.capitalize()} access required")
        return user

    return dependency


CurrentUser = Annotated[User, Depends(get_current_user)]
