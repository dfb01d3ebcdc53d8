"""Authentication provider protocol."""

from dataclasses import dataclass, field
from typing import Optional, Protocol


@dataclass
class ServiceIdentity:
    """A calling service extracted from an auth token."""

    id: str
    name: Optional[str] = None
    scopes: list[str] = field(default_factory=list)


class IAuthProvider(Protocol):
    """Protocol for authentication providers."""

    async def validate_token(self, token: str) -> Optional[ServiceIdentity]:
        """
        Validate an authentication token.

        Args:
            token: The bearer token to validate

        Returns:
            ServiceIdentity if valid, None if invalid
        """
        ...

    def create_token(self, identity: ServiceIdentity) -> str:
        """
        Create an authentication token for a calling service.

        Args:
            identity: The service to create a token for

        Returns:
            The generated token string
        """
        ...
