import asyncio
import logging
import os
from typing import Optional
from datetime import timezone

from cryptography.fernet import Fernet, InvalidToken
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from storage.db import get_pool

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
SCOPES = [
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar.readonly",
]


class GoogleAuthStore:
    """OAuth tokens for the calendar account, Fernet-encrypted at rest."""

    def __init__(self, key: Optional[str] = None):
        key = key or os.getenv("GOOGLE_TOKEN_ENCRYPTION_KEY")
        if not key:
            # tokens written with a temporary key are unreadable after a restart
            logger.warning(
                "GOOGLE_TOKEN_ENCRYPTION_KEY not set. Generating a temporary key."
            )
            key = Fernet.generate_key().decode()

        self.fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def _encrypt(self, data: Optional[str]) -> Optional[str]:
        if not data:
            return None
        return self.fernet.encrypt(data.encode()).decode()

    def _decrypt(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        try:
            return self.fernet.decrypt(token.encode()).decode()
        except InvalidToken:
            logger.error("Failed to decrypt token (wrong GOOGLE_TOKEN_ENCRYPTION_KEY?)")
            return None

    async def save_credentials(
        self, user_id: str, credentials: Credentials, email: Optional[str] = None
    ) -> None:
        """Store OAuth tokens in PostgreSQL (encrypted)."""
        pool = get_pool()

        access_token_enc = self._encrypt(credentials.token)
        refresh_token_enc = self._encrypt(credentials.refresh_token)
        expiry = credentials.expiry
        if expiry is not None and expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)

        # Re-consent does not always return a refresh token; keep the stored one then.
        await pool.execute(
            """
            INSERT INTO google_credentials (user_id, access_token, refresh_token, token_expiry, email)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (user_id) DO UPDATE SET
                access_token = EXCLUDED.access_token,
                refresh_token = COALESCE(EXCLUDED.refresh_token, google_credentials.refresh_token),
                token_expiry = EXCLUDED.token_expiry,
                email = COALESCE(EXCLUDED.email, google_credentials.email),
                updated_at = NOW()
            """,
            user_id,
            access_token_enc,
            refresh_token_enc,
            expiry,
            email,
        )

        logger.info(f"Saved Google credentials for user {user_id}")

    async def get_credentials(self, user_id: str) -> Optional[Credentials]:
        pool = get_pool()

        row = await pool.fetchrow(
            "SELECT access_token, refresh_token, token_expiry FROM google_credentials WHERE user_id = $1",
            user_id,
        )

        if not row:
            return None

        access_token = self._decrypt(row["access_token"])
        refresh_token = self._decrypt(row["refresh_token"])

        if not access_token:
            return None

        expiry = row["token_expiry"]
        # Ensure expiry is naive UTC for compatibility with google-auth
        if expiry and expiry.tzinfo:
            expiry = expiry.astimezone(timezone.utc).replace(tzinfo=None)

        return Credentials(
            token=access_token,
            refresh_token=refresh_token,
            token_uri=TOKEN_URI,
            client_id=os.getenv("GOOGLE_CLIENT_ID"),
            client_secret=os.getenv("GOOGLE_CLIENT_SECRET"),
            scopes=SCOPES,
            expiry=expiry,
        )

    async def get_valid_credentials(self, user_id: str) -> Optional[Credentials]:
        """Credentials with a live access token, refreshing and re-saving them if expired."""
        creds = await self.get_credentials(user_id)
        if creds is None:
            return None
        if not creds.expired:
            return creds
        if not creds.refresh_token:
            logger.warning(f"Access token for user {user_id} expired and no refresh token is stored")
            return None

        await asyncio.to_thread(creds.refresh, Request())
        await self.save_credentials(user_id, creds)
        logger.info(f"Refreshed Google access token for user {user_id}")
        return creds

    async def delete_credentials(self, user_id: str) -> None:
        pool = get_pool()
        await pool.execute("DELETE FROM google_credentials WHERE user_id = $1", user_id)
        logger.info(f"Deleted Google credentials for user {user_id}")
