"""
Bearer token handling.

Tokens are issued by the upstream identity service; this side only decodes
them and reads the principal id from the `sub` claim.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from loguru import logger

from core.errors import Unauthenticated


class TokenDecoder:

    def __init__(self, secret: Optional[str], algorithm: str = "HS256"):
        self.secret = secret
        self.algorithm = algorithm

    def decode(self, token: str) -> Dict[str, Any]:
        """Verify signature and expiry; raises Unauthenticated on any failure"""
        if not self.secret:
            logger.error("[TOKEN_VERIFY] JWT_SECRET is not configured")
            raise Unauthenticated("Token verification is not configured")
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            logger.warning("[TOKEN_VERIFY] Token expired")
            raise Unauthenticated("Token expired")
        except jwt.InvalidTokenError as e:
            logger.warning(f"[TOKEN_VERIFY] Invalid token: {e}")
            raise Unauthenticated("Invalid token")

        if not payload.get("sub"):
            raise Unauthenticated("Token has no subject")
        return payload

    def user_id_from_header(self, authorization: Optional[str]) -> str:
        if not authorization or not authorization.startswith("Bearer "):
            raise Unauthenticated("Missing authorization token")
        token = authorization[len("Bearer "):].strip()
        return str(self.decode(token)["sub"])

    def issue(self, user_id: str, expires_in: int = 3600, **claims) -> str:
        """Mint a token for `user_id` (local tooling and tests)"""
        payload = {
            "sub": user_id,
            "iat": datetime.now(timezone.utc),
            "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        }
        payload.update(claims)
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)
