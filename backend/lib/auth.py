"""
Identity verification for bearer tokens

Two ways to verify a Supabase access token:
- locally, with the project's JWT secret (HS256), when SUPABASE_JWT_SECRET is set
- remotely, by asking Supabase Auth for the token's user
"""
import asyncio
import logging
from typing import Optional

from jose import JWTError, jwt

from agentic_tutor_pipeline.errors import AuthError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"


class SupabaseIdentityVerifier:
    """Resolves a bearer token to the principal (user) id it was issued for."""

    def __init__(self, supabase_client=None, jwt_secret: Optional[str] = None):
        if supabase_client is None and not jwt_secret:
            raise ValueError("A Supabase client or SUPABASE_JWT_SECRET is required to verify tokens")
        self.supabase = supabase_client
        self.jwt_secret = jwt_secret

    def _verify_locally(self, token: str) -> str:
        try:
            claims = jwt.decode(token, self.jwt_secret, algorithms=[JWT_ALGORITHM], audience=JWT_AUDIENCE)
        except JWTError as e:
            raise AuthError("Invalid or expired token") from e

        user_id = claims.get("sub")
        if not user_id:
            raise AuthError("Token has no subject")
        return user_id

    async def _verify_remotely(self, token: str) -> str:
        try:
            user_response = await asyncio.to_thread(self.supabase.auth.get_user, token)
        except Exception as e:
            logger.warning(f"Auth error: {e}")
            raise AuthError("Could not validate credentials") from e

        if not user_response or not user_response.user:
            raise AuthError("Invalid or expired token")
        return user_response.user.id

    async def verify(self, token: str) -> str:
        """
        Validate a bearer token.

        Args:
            token: Raw token (without the "Bearer " prefix)

        Returns:
            str: Verified user id

        Raises:
            AuthError: If the token is missing, invalid or expired
        """
        if not token:
            raise AuthError("Authorization token required")

        if self.jwt_secret:
            return self._verify_locally(token)
        return await self._verify_remotely(token)
