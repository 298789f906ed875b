"""
Request authentication.

Builds the FastAPI dependency that turns an ``Authorization: Bearer`` header
into an AuthContext carrying the principal's roles and effective permissions.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from fastapi import Request

from tabulary.runtime.errors import AuthenticationError
from tabulary.runtime.identity import IdentityService, TokenVerifier
from tabulary.specs.permission import AuthContext


def extract_bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def create_auth_dependency(
    verifier: TokenVerifier,
    identity: IdentityService,
) -> Callable[[Request], Awaitable[AuthContext]]:
    """
    Create a FastAPI dependency requiring a valid bearer token.

    Example:
        ```python
        get_auth = create_auth_dependency(verifier, identity)

        @router.get("/orders")
        async def list_orders(auth: AuthContext = Depends(get_auth)):
            ...
        ```

    Raises (from the dependency):
        AuthenticationError: header missing, malformed, or token invalid/expired
    """

    async def get_auth_context(request: Request) -> AuthContext:
        token = extract_bearer_token(request)
        if token is None:
            raise AuthenticationError("Authentication required")

        claims = verifier.verify(token)
        return AuthContext(
            principal_id=claims.sub,
            roles=identity.roles_for(claims.sub),
            permissions=sorted(identity.effective_permissions(claims.sub)),
            is_authenticated=True,
        )

    return get_auth_context


async def anonymous_context() -> AuthContext:
    """Dependency used when authorization is disabled."""
    return AuthContext()
