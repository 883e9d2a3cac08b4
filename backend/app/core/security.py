"""
Security Module - caller identity and branch scope

Tokens are issued by the authentication service; this module only verifies
them and turns their claims into the acting user id and a BranchScope.
"""
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.core.branch_scope import BranchScope
from app.core.config import settings

# Bearer token scheme
bearer_scheme = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return payload
    except JWTError:
        return None


async def get_token_claims(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> dict:
    """
    Dependency returning the verified token payload.
    Supports both Authorization header and cookies.
    """
    token = None

    if credentials:
        token = credentials.credentials

    if not token:
        token = request.cookies.get("access_token")

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


async def get_current_user_id(claims: dict = Depends(get_token_claims)) -> Optional[int]:
    """Acting user id, or None when the token carries no usable subject."""
    try:
        return int(claims.get("sub"))
    except (TypeError, ValueError):
        return None


async def get_branch_scope(claims: dict = Depends(get_token_claims)) -> BranchScope:
    branch_ids = []
    for value in claims.get("branch_ids") or []:
        try:
            branch_id = int(value)
        except (TypeError, ValueError):
            continue
        if branch_id > 0 and branch_id not in branch_ids:
            branch_ids.append(branch_id)

    primary = claims.get("primary_branch_id") or (branch_ids[0] if branch_ids else 0)
    is_admin = bool(claims.get("is_admin"))

    if not is_admin and not branch_ids:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is not assigned to any branch"
        )

    return BranchScope(is_admin=is_admin, branch_ids=branch_ids, primary_branch_id=int(primary))
