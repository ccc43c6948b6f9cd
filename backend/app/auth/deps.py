"""FastAPI dependencies for authentication and authorization.

Dependencies:
  get_org_context          → decode JWT, return OrganizationContext
  require_capability(...)  → restrict to holders of specific capabilities
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from app.auth.jwt import decode_token
from app.auth.permissions import has_permission
from app.middleware.exceptions import PermissionDeniedError
from app.tenancy import OrganizationContext

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


async def get_org_context(token: str = Depends(oauth2_scheme)) -> OrganizationContext:
    """Build the organization context from the JWT claims.

    Zero-DB-hit: the identity service has already resolved the user's
    organization and capabilities into the token.
    """
    payload = decode_token(token)
    organization_id: str | None = payload.get("org_id")
    if not organization_id or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return OrganizationContext(
        organization_id=organization_id,
        user_id=payload.get("sub"),
        capabilities=frozenset(payload.get("permissions", [])),
    )


def require_capability(*caps: str):
    """Dependency factory: restrict to callers holding ALL listed capabilities.

    Usage:
        @router.post("/{invoice_id}/finalize")
        async def finalize(
            ctx: OrganizationContext = Depends(require_capability("invoices.finalize")),
        ):
            ...
    """
    async def _check(ctx: OrganizationContext = Depends(get_org_context)) -> OrganizationContext:
        missing = [c for c in caps if not has_permission(ctx.capabilities, c)]
        if missing:
            raise PermissionDeniedError(f"Missing permissions: {', '.join(missing)}")
        return ctx

    return _check
