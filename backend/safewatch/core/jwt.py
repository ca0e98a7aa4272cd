"""JWT verification for tokens issued by the identity service."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

import jwt
from pydantic import BaseModel, Field

from safewatch.config import settings

logger = logging.getLogger("api.auth")


class TokenPayload(BaseModel):
    """JWT token payload structure."""

    sub: str = Field(..., description="Subject (user or institution ID)")
    exp: datetime = Field(..., description="Expiration time")
    iat: datetime = Field(..., description="Issued at time")
    jti: str = Field(..., description="JWT ID (unique token identifier)")
    roles: list[str] = Field(default_factory=list, description="User roles")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional claims")


class JWTConfig(BaseModel):
    """JWT configuration."""

    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    issuer: str = "safewatch-auth"
    audience: str = "safewatch-client"


class JWTManager:
    """
    Validates bearer tokens and extracts role claims.

    Issuing is limited to access tokens signed with the shared secret, used
    by the identity service's local stand-in and by tests.
    """

    def __init__(self, config: Optional[JWTConfig] = None):
        self.config = config or JWTConfig(
            secret_key=settings.secret_key,
            algorithm=settings.jwt_algorithm,
            access_token_expire_minutes=settings.jwt_access_expire_minutes,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
        )

    def create_access_token(
        self,
        subject: str,
        roles: Optional[list[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        expires_in: Optional[timedelta] = None,
    ) -> str:
        """
        Create a signed access token.

        Args:
            subject: User or institution identifier
            roles: List of role names
            metadata: Additional claims to include
            expires_in: Lifetime override; defaults to the configured expiry

        Returns:
            Encoded JWT access token
        """
        now = datetime.now(timezone.utc)
        expire = now + (expires_in or timedelta(minutes=self.config.access_token_expire_minutes))

        payload = {
            "sub": subject,
            "exp": expire,
            "iat": now,
            "jti": str(uuid4()),
            "roles": roles or [],
            "iss": self.config.issuer,
            "aud": self.config.audience,
        }

        if metadata:
            payload["metadata"] = metadata

        return jwt.encode(payload, self.config.secret_key, algorithm=self.config.algorithm)

    def decode_token(self, token: str) -> Optional[TokenPayload]:
        """
        Decode and validate a JWT token.

        Returns:
            TokenPayload if valid, None if invalid or expired
        """
        try:
            payload = jwt.decode(
                token,
                self.config.secret_key,
                algorithms=[self.config.algorithm],
                audience=self.config.audience,
                issuer=self.config.issuer,
            )

            return TokenPayload(
                sub=payload["sub"],
                exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
                iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                jti=payload.get("jti", ""),
                roles=payload.get("roles", []),
                metadata=payload.get("metadata", {}),
            )

        except jwt.ExpiredSignatureError:
            logger.debug("Token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {e}")
            return None
        except KeyError as e:
            logger.warning(f"Token missing claim: {e}")
            return None


_jwt_manager: Optional[JWTManager] = None


def get_jwt_manager() -> JWTManager:
    """Get or create the JWT manager instance."""
    global _jwt_manager
    if _jwt_manager is None:
        _jwt_manager = JWTManager()
    return _jwt_manager
