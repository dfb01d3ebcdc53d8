"""JWT authentication provider implementation.

Calling services present HS256 tokens signed with the shared secret:
    {
        "sub": "billing-service",
        "name": "Billing",
        "scope": "signals:write notifications:write",
        "exp": 1234567890
    }
"""

from datetime import UTC, datetime, timedelta
from typing import Optional

import structlog
from jose import ExpiredSignatureError, JWTError, jwt

from core.config import settings
from core.exceptions import AuthenticationError, ErrorCode
from infrastructure.auth.provider import ServiceIdentity

logger = structlog.get_logger()


class JWTAuthProvider:
    """JWT-based authentication provider for service-to-service calls."""

    def __init__(
        self,
        secret_key: str = settings.jwt_secret_key,
        algorithm: str = settings.jwt_algorithm,
        expire_minutes: int = settings.jwt_expire_minutes,
    ) -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._expire_minutes = expire_minutes

    async def validate_token(self, token: str) -> Optional[ServiceIdentity]:
        """
        Validate a JWT token and extract the calling service.

        Args:
            token: The JWT to validate

        Returns:
            ServiceIdentity if valid, None if invalid

        Raises:
            AuthenticationError: If the token is well-formed but expired
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"verify_aud": False},
            )
        except ExpiredSignatureError:
            logger.info("token_expired")
            raise AuthenticationError(
                message="Token has expired",
                error_code=ErrorCode.TOKEN_EXPIRED,
            )
        except JWTError as exc:
            logger.info("token_rejected", error=str(exc))
            return None

        subject = payload.get("sub")
        if not subject:
            return None

        scope = payload.get("scope") or ""
        return ServiceIdentity(
            id=str(subject),
            name=payload.get("name"),
            scopes=scope.split(),
        )

    def create_token(self, identity: ServiceIdentity) -> str:
        """
        Create a JWT token for a calling service.

        Args:
            identity: The service to create a token for

        Returns:
            The generated JWT string
        """
        expire = datetime.now(UTC) + timedelta(minutes=self._expire_minutes)

        payload: dict = {
            "sub": identity.id,
            "name": identity.name,
            "scope": " ".join(identity.scopes),
            "exp": expire,
        }

        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
