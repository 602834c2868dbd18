"""
Token Revocation Service.

Signed-out session tokens are remembered by SHA-256 hash until they expire.
Lookups hit an in-process cache that is loaded once from the database.
"""

import hashlib
import time
from datetime import UTC, datetime
from typing import ClassVar

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import RevokedToken

logger = get_logger(__name__)


class TokenRevocationService:
    """
    Tracks revoked session tokens.

    Usage:
        if await token_revocation_service.is_revoked(token, db):
            raise HTTPException(401, "Token has been revoked")

        await token_revocation_service.revoke_token(
            token=token,
            user_id=str(user.id),
            reason="sign_out",
            token_exp=expires_at,
            revoked_by=str(user.id),
            db=db,
        )
    """

    # token_hash -> expires_at timestamp
    _cache: ClassVar[dict[str, float]] = {}
    _cache_loaded: ClassVar[bool] = False
    _last_cleanup: ClassVar[float] = 0
    _CLEANUP_INTERVAL: ClassVar[int] = 300

    @staticmethod
    def hash_token(token: str) -> str:
        """SHA-256 hex digest of the raw token. Raw tokens are never stored."""
        return hashlib.sha256(token.encode()).hexdigest()

    async def load_cache(self, db: AsyncSession) -> None:
        """Load unexpired revocations from the database (once per process)."""
        if TokenRevocationService._cache_loaded:
            return

        stmt = select(RevokedToken).where(RevokedToken.token_expires_at > datetime.now(UTC))
        result = await db.execute(stmt)
        tokens = result.scalars().all()

        for token in tokens:
            TokenRevocationService._cache[token.token_hash] = token.token_expires_at.timestamp()

        TokenRevocationService._cache_loaded = True
        logger.info("token_revocation_cache_loaded", count=len(tokens))

    async def is_revoked(self, token: str, db: AsyncSession) -> bool:
        """Return True if the token was revoked and has not expired yet."""
        if not TokenRevocationService._cache_loaded:
            await self.load_cache(db)

        await self._cleanup_if_needed(db)

        token_hash = self.hash_token(token)
        expires_at = TokenRevocationService._cache.get(token_hash)
        if expires_at is None:
            return False

        if time.time() < expires_at:
            logger.warning("revoked_token_rejected", token_hash=token_hash[:16])
            return True

        del TokenRevocationService._cache[token_hash]
        return False

    async def revoke_token(
        self,
        token: str,
        user_id: str,
        reason: str,
        token_exp: datetime,
        revoked_by: str,
        db: AsyncSession,
    ) -> None:
        """Revoke a token. Revoking the same token twice is a no-op."""
        token_hash = self.hash_token(token)

        await db.merge(
            RevokedToken(
                token_hash=token_hash,
                user_id=user_id,
                reason=reason,
                revoked_at=datetime.now(UTC),
                token_expires_at=token_exp,
                revoked_by=revoked_by,
            )
        )
        await db.commit()

        TokenRevocationService._cache[token_hash] = token_exp.timestamp()

        logger.info(
            "token_revoked",
            token_hash=token_hash[:16],
            user_id=user_id,
            reason=reason,
            expires_at=token_exp.isoformat(),
        )

    async def _cleanup_if_needed(self, db: AsyncSession) -> None:
        """Drop expired revocations from cache and database every few minutes."""
        now = time.time()
        if now - TokenRevocationService._last_cleanup < TokenRevocationService._CLEANUP_INTERVAL:
            return

        TokenRevocationService._last_cleanup = now

        expired = [h for h, exp in TokenRevocationService._cache.items() if now > exp]
        for h in expired:
            del TokenRevocationService._cache[h]

        result = await db.execute(
            delete(RevokedToken).where(RevokedToken.token_expires_at < datetime.now(UTC))
        )
        await db.commit()
        rows_deleted = result.rowcount or 0  # type: ignore[attr-defined]

        if expired or rows_deleted:
            logger.info(
                "revoked_tokens_cleanup",
                cache_removed=len(expired),
                db_removed=rows_deleted,
            )


# Global singleton
token_revocation_service = TokenRevocationService()
