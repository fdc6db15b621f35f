import logging
from typing import Optional

import httpx
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.orm import Session

from .cache import get_cache
from .config import CLERK_API_URL, CLERK_JWKS_URL, CLERK_JWT_KEY, CLERK_SECRET_KEY
from .database import get_db
from .models import User

logger = logging.getLogger(__name__)

security = HTTPBearer()

JWKS_CACHE_KEY = "clerk:jwks"
JWKS_CACHE_TTL = 3600


async def fetch_clerk_jwks() -> Optional[dict]:
    """Fetch Clerk's JSON Web Key Set (frontend API URL, or the Backend API with the secret key)"""
    if CLERK_JWKS_URL:
        url, headers = CLERK_JWKS_URL, {}
    elif CLERK_SECRET_KEY:
        url, headers = f"{CLERK_API_URL}/jwks", {"Authorization": f"Bearer {CLERK_SECRET_KEY}"}
    else:
        logger.error("❌ Neither CLERK_JWKS_URL nor CLERK_SECRET_KEY configured")
        return None

    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(url, headers=headers)
        if response.status_code == 200:
            jwks = response.json()
            logger.info(f"✅ Fetched {len(jwks.get('keys', []))} Clerk signing keys")
            return jwks
        logger.error(f"❌ Failed to fetch Clerk JWKS: HTTP {response.status_code}")
    except httpx.HTTPError as e:
        logger.error(f"❌ Error fetching Clerk JWKS: {e}")
    return None


async def get_signing_key(kid: str, cache) -> Optional[dict]:
    """Find the JWK for a key id, refreshing the cached key set once on a miss"""
    jwks = cache.get(JWKS_CACHE_KEY)
    for attempt in range(2):
        if jwks is None or attempt == 1:
            jwks = await fetch_clerk_jwks()
            if jwks is None:
                return None
            cache.set(JWKS_CACHE_KEY, jwks, JWKS_CACHE_TTL)

        for key in jwks.get("keys", []):
            if key.get("kid") == kid:
                return key
        logger.warning(f"⚠️ Key ID {kid} not in cached JWKS, refreshing")
    return None


async def verify_clerk_session_token(token: str, cache) -> dict:
    """Verify a Clerk session JWT (RS256) and return its claims"""
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise HTTPException(status_code=401, detail="Invalid token header") from e

    if header.get("alg") != "RS256":
        logger.error(f"❌ Invalid token algorithm: {header.get('alg')}")
        raise HTTPException(status_code=401, detail="Invalid token algorithm")

    if CLERK_JWT_KEY:
        key = CLERK_JWT_KEY
    else:
        kid = header.get("kid")
        if not kid:
            raise HTTPException(status_code=401, detail="Token missing key ID")
        key = await get_signing_key(kid, cache)
        if key is None:
            raise HTTPException(status_code=401, detail="Unable to verify token signature")

    try:
        # Clerk session tokens carry no audience claim
        return jwt.decode(token, key, algorithms=["RS256"], options={"verify_aud": False})
    except ExpiredSignatureError as e:
        raise HTTPException(
            status_code=401,
            detail="Token has expired. Please refresh your session.",
            headers={"X-Token-Expired": "true"},
        ) from e
    except JWTError as e:
        logger.warning(f"⚠️ Token verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid token") from e


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
    cache=Depends(get_cache),
) -> User:
    """Get current user from a Clerk session token"""
    token = credentials.credentials
    if len(token.split(".")) != 3:
        raise HTTPException(
            status_code=401, detail="Invalid token format. Expected a valid JWT token."
        )

    claims = await verify_clerk_session_token(token, cache)
    user_id = claims.get("sub")
    if not user_id:
        logger.error(f"❌ Token missing sub claim. Available claims: {list(claims.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        # Row is created by the Clerk webhook; it may not have arrived yet
        logger.warning(f"⚠️ Authenticated user {user_id} not found in database")
        raise HTTPException(status_code=404, detail="User not found")

    logger.debug(f"✅ User authenticated: {user.id}")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Allow only admin users"""
    if user.role != "admin":
        logger.warning(f"⚠️ User {user.id} attempted admin-only access")
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
