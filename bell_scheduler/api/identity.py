'''
Identity: turns a bearer token into a stable user id (the account email).
'''
from typing import Optional, Sequence

from jose import JWTError, jwt

from bell_scheduler.exceptions import AuthError
from bell_scheduler.utils.logging_config import get_api_logger

logger = get_api_logger()


class JWTIdentityProvider:
    """Verifies identity-provider JWTs signed with a shared secret."""

    def __init__(
        self,
        secret: str,
        algorithms: Sequence[str] = ("HS256",),
        audience: Optional[str] = None,
    ):
        self.secret = secret
        self.algorithms = list(algorithms)
        self.audience = audience

    def identify(self, token: Optional[str]) -> str:
        if not token:
            raise AuthError("Please login to access this feature")
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=self.algorithms,
                audience=self.audience,
                options={"verify_aud": self.audience is not None},
            )
        except JWTError as e:
            logger.warning(f"JWT decode/validation error: {e}")
            raise AuthError("Could not validate credentials")

        user_id = claims.get("email") or claims.get("sub")
        if not user_id:
            logger.warning("JWT carries neither email nor sub claim")
            raise AuthError("Could not validate credentials")
        return str(user_id)

    def create_token(self, email: str, **claims) -> str:
        """Issue a token for ``email``. Used by scripts and tests."""
        payload = {"sub": email, "email": email, **claims}
        if self.audience is not None:
            payload.setdefault("aud", self.audience)
        return jwt.encode(payload, self.secret, algorithm=self.algorithms[0])
