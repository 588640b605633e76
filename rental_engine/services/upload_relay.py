"""
Cross-device upload relay.

A desktop client opens a session and polls it; a phone holding the session id
appends image references. Sessions live only in Redis and vanish on close or
TTL expiry, after which every upload and poll reports not found.
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import redis.asyncio as redis
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from rental_engine.config import get_settings
from rental_engine.exceptions import NotFoundError, ValidationError

settings = get_settings()
logger = logging.getLogger(__name__)

ALLOWED_IMAGE_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif", ".webp"}
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}


def session_key(session_id: str) -> str:
    return f"upload:session:{session_id}"


def images_key(session_id: str) -> str:
    return f"upload:images:{session_id}"


class UploadSession(BaseModel):
    """A freshly opened relay session."""

    session_id: str
    consumer_url: str
    photo_slot: str | None = None
    created_at: datetime
    expires_at: datetime


class SessionSnapshot(BaseModel):
    """What the polling consumer sees."""

    images: list[str]
    photo_slot: str | None = None
    count: int


class UploadRelayService:
    """Redis-backed upload sessions."""

    def __init__(self, redis_client: redis.Redis, ttl_seconds: int | None = None):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds or settings.UPLOAD_SESSION_TTL_SECONDS

    async def create_session(self, photo_slot: str | None = None) -> UploadSession:
        """
        Open a new session.

        Returns:
            Session with its unguessable id and the URL the phone should open
        """
        session_id = secrets.token_hex(16)
        created_at = datetime.now(timezone.utc)

        await self.redis.hset(
            session_key(session_id),
            mapping={
                "created_at": created_at.isoformat(),
                "ttl_seconds": str(self.ttl_seconds),
                "photo_slot": photo_slot or "",
            },
        )
        await self.redis.expire(session_key(session_id), self.ttl_seconds)

        logger.info(f"Upload session {session_id[:8]}... opened (slot={photo_slot})")
        return UploadSession(
            session_id=session_id,
            consumer_url=f"{settings.CLIENT_URL.rstrip('/')}/mobile-upload/{session_id}",
            photo_slot=photo_slot,
            created_at=created_at,
            expires_at=created_at + timedelta(seconds=self.ttl_seconds),
        )

    async def upload(self, session_id: str, image_url: str) -> int:
        """
        Append an image reference to a live session.

        Returns:
            Number of images in the session after the append

        Raises:
            NotFoundError: If the session is closed or expired
        """
        if not image_url:
            raise ValidationError("Image reference is required")
        if not await self.redis.exists(session_key(session_id)):
            raise NotFoundError("Upload session", session_id)

        count = await self.redis.rpush(images_key(session_id), image_url)

        # The session may have expired or been closed between the check and the push
        ttl_ms = await self.redis.pttl(session_key(session_id))
        if ttl_ms == -2:
            await self.redis.delete(images_key(session_id))
            raise NotFoundError("Upload session", session_id)
        if ttl_ms > 0:
            await self.redis.pexpire(images_key(session_id), ttl_ms)

        return int(count)

    async def poll(self, session_id: str) -> SessionSnapshot:
        """
        Get the images uploaded so far, in arrival order.

        Raises:
            NotFoundError: If the session is closed or expired
        """
        meta = await self.redis.hgetall(session_key(session_id))
        if not meta:
            raise NotFoundError("Upload session", session_id)

        images = await self.redis.lrange(images_key(session_id), 0, -1)
        return SessionSnapshot(
            images=images,
            photo_slot=meta.get("photo_slot") or None,
            count=len(images),
        )

    async def latest_image(self, session_id: str) -> str | None:
        """The most recent upload; each arrival supersedes the previous one."""
        snapshot = await self.poll(session_id)
        return snapshot.images[-1] if snapshot.images else None

    async def close(self, session_id: str) -> None:
        """Destroy a session. Closing an unknown session is not an error."""
        await self.redis.delete(session_key(session_id), images_key(session_id))

    async def store_file(
        self,
        session_id: str,
        filename: str | None,
        content_type: str | None,
        content: bytes,
    ) -> int:
        """
        Write an uploaded image to the blob directory and append its URL.

        Raises:
            ValidationError: If the file is not an accepted image or too large
            NotFoundError: If the session is closed or expired
        """
        extension = Path(filename or "").suffix.lower()
        if extension not in ALLOWED_IMAGE_EXTENSIONS or (
            content_type and content_type not in ALLOWED_IMAGE_TYPES
        ):
            raise ValidationError("Only image files are allowed (jpeg, jpg, png, gif, webp)")
        if len(content) > settings.UPLOAD_MAX_BYTES:
            raise ValidationError(
                "Image is too large",
                {"max_bytes": settings.UPLOAD_MAX_BYTES, "size": len(content)},
            )
        if not await self.redis.exists(session_key(session_id)):
            raise NotFoundError("Upload session", session_id)

        stored_name = f"{uuid.uuid4().hex}{extension}"
        target = Path(settings.UPLOAD_DIR) / stored_name
        await run_in_threadpool(_write_file, target, content)

        try:
            return await self.upload(session_id, f"/uploads/{stored_name}")
        except NotFoundError:
            # Session closed while the file was being written
            await run_in_threadpool(target.unlink, missing_ok=True)
            logger.info(f"Discarded {stored_name}, upload session {session_id} is gone")
            raise


def _write_file(target: Path, content: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(content)
