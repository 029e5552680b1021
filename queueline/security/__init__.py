"""Credential verification for the access gate."""

from .identity import (
    IdentityProviderError,
    IdentityVerifier,
    InvalidCredentialsError,
    LineIdTokenVerifier,
    Role,
    SentinelTokenVerifier,
    User,
    build_identity_verifier,
)

__all__ = [
    "IdentityProviderError",
    "IdentityVerifier",
    "InvalidCredentialsError",
    "LineIdTokenVerifier",
    "Role",
    "SentinelTokenVerifier",
    "User",
    "build_identity_verifier",
]
