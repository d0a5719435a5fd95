"""Bearer token verification for members and chapter operators"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from dues_gateway.config import settings
from dues_gateway.domain.exceptions import AuthenticationError
from dues_gateway.domain.models import Requester, Role


class AuthGuard:
    """Resolves a bearer credential to the calling identity"""

    def __init__(self, secret_key: str | None = None, algorithm: str | None = None):
        self.secret_key = secret_key or settings.jwt_secret_key
        self.algorithm = algorithm or settings.jwt_algorithm

    def authenticate(self, token: Optional[str]) -> Requester:
        """
        Decode and validate a JWT.

        Raises:
            AuthenticationError: Missing, expired, tampered or incomplete token
        """
        if not token:
            raise AuthenticationError("Missing bearer token")

        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
            user_id = payload.get("sub")
            role = Role(payload.get("role", Role.MEMBER.value))
        except (JWTError, ValueError) as e:
            raise AuthenticationError("Invalid or expired token") from e

        if not user_id:
            raise AuthenticationError("Token has no subject")

        return Requester(user_id=str(user_id), role=role, chapter_id=payload.get("chapter_id"))


def create_access_token(
    *,
    sub: str,
    role: Role = Role.MEMBER,
    chapter_id: str | None = None,
    expires_minutes: int = 60,
    secret_key: str | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "role": Role(role).value,
        "chapter_id": chapter_id,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
    }
    return jwt.encode(payload, secret_key or settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
