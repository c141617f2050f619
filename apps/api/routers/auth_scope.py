"""Authentication dependencies resolving the requesting library user."""

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.user import User
from services.session_token import SessionClaims, decode_session_token


auth_scheme = HTTPBearer(auto_error=False)


async def get_session_claims(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> SessionClaims:
    """Resolve authenticated user from Bearer session token."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")

    try:
        return decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


async def ensure_user(db: AsyncSession, claims: SessionClaims) -> User:
    """Make sure the token subject has a users row to own collections."""
    result = await db.execute(select(User).where(User.id == claims.user_id))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(
        id=claims.user_id,
        email=claims.email or f"{claims.user_id}@local.invalid",
        name=claims.name,
    )
    db.add(user)
    await db.commit()
    return user


async def get_requester_id(
    claims: SessionClaims = Depends(get_session_claims),
    db: AsyncSession = Depends(get_db),
) -> str:
    await ensure_user(db, claims)
    return claims.user_id
