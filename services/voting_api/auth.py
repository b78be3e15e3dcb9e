"""Authentication gate.

Two policies share one contract, issue/resolve/revoke:
- SessionAuthenticator: opaque ids looked up in a server-side SessionStore
- TokenAuthenticator: signed, expiring JWTs (HS256 by default)

require_voter is the single FastAPI dependency placed in front of every
protected route. It either resolves the caller's CNP or raises Unauthorized
before the handler body runs.
"""
import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import Header, Request
from jose import JWTError, jwt

from .errors import Unauthorized
from .sessions import SessionStore

logger = logging.getLogger(__name__)


class Authenticator:
    """Interface shared by the authentication policies."""

    token_type = "session"

    async def issue(self, cnp: str) -> str:
        raise NotImplementedError

    async def resolve(self, credential: str) -> Optional[str]:
        raise NotImplementedError

    async def revoke(self, credential: str) -> bool:
        raise NotImplementedError

    async def check_health(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class SessionAuthenticator(Authenticator):
    """Server-side sessions."""

    token_type = "session"

    def __init__(self, store: SessionStore):
        self.store = store

    async def issue(self, cnp: str) -> str:
        return await self.store.create(cnp)

    async def resolve(self, credential: str) -> Optional[str]:
        return await self.store.get(credential)

    async def revoke(self, credential: str) -> bool:
        return await self.store.destroy(credential)

    async def check_health(self) -> bool:
        return await self.store.check_health()

    async def close(self) -> None:
        await self.store.close()


class TokenAuthenticator(Authenticator):
    """Stateless JWTs with an in-process revocation list for logout."""

    token_type = "bearer"

    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_minutes: int = 60):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes
        # jti -> unix time after which the token is expired anyway
        self._revoked: Dict[str, float] = {}

    def create_access_token(self, data: dict) -> str:
        to_encode = data.copy()
        expire = datetime.now(timezone.utc) + timedelta(minutes=self.expire_minutes)
        to_encode.update({"exp": expire, "jti": uuid.uuid4().hex})
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def _decode(self, token: str) -> Optional[dict]:
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            logger.debug(f"Rejected token: {e}")
            return None

    def _prune(self) -> None:
        now = time.time()
        for jti in [jti for jti, exp in self._revoked.items() if exp <= now]:
            del self._revoked[jti]

    async def issue(self, cnp: str) -> str:
        return self.create_access_token({"sub": cnp})

    async def resolve(self, credential: str) -> Optional[str]:
        payload = self._decode(credential)
        if payload is None or payload.get("jti") in self._revoked:
            return None
        return payload.get("sub")

    async def revoke(self, credential: str) -> bool:
        payload = self._decode(credential)
        if payload is None:
            return False
        self._prune()
        self._revoked[payload["jti"]] = float(payload["exp"])
        return True


def extract_credential(x_session_id: Optional[str], authorization: Optional[str]) -> Optional[str]:
    """Pick the credential from X-Session-ID or an Authorization bearer header."""
    if x_session_id and x_session_id.strip():
        return x_session_id.strip()
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    return None


async def require_voter(
    request: Request,
    x_session_id: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None)
) -> str:
    """Resolve the caller's CNP or reject the request with 401."""
    credential = extract_credential(x_session_id, authorization)
    if credential is None:
        raise Unauthorized("Session ID required")

    cnp = await request.app.state.authenticator.resolve(credential)
    if cnp is None:
        raise Unauthorized("Invalid or expired session")

    request.state.voter = cnp
    request.state.credential = credential
    return cnp
