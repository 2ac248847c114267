"""
Deep-Check Enrollment Profile Repository

Redis-backed storage for candidate enrollment profiles.

Key Schemas:
    PROFILE:{profile_id}      → EnrollmentProfile JSON (TTL = profile lifetime)
    PROFILE_EMAIL:{email}     → Sorted set of profile ids scored by creation time

Lookups never raise: a missing, expired or malformed record, or a Redis
failure, is reported as "no profile".
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import ValidationError
from redis.exceptions import RedisError

from core.schemas.inputs import EnrollmentContext, KeystrokeProfile
from core.schemas.outputs import EnrollmentProfile


logger = logging.getLogger(__name__)


class ProfileStoreError(Exception):
    """The profile store is unavailable or rejected a write."""


def compute_enrollment_hash(profile: KeystrokeProfile) -> str:
    """SHA-256 hex digest of the profile's canonical JSON."""
    payload = profile.model_dump_json(by_alias=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def new_profile_id() -> str:
    return f"ep_{secrets.token_hex(12)}"


class ProfileRepository:
    """
    Enrollment profile store.

    ``client`` may be None when Redis is not configured: lookups then miss
    and saves raise ProfileStoreError.
    """

    PROFILE_PREFIX: str = "PROFILE"
    EMAIL_INDEX_PREFIX: str = "PROFILE_EMAIL"

    def __init__(self, client: Optional[Any] = None, ttl_days: int = 90) -> None:
        self.client = client
        self.ttl_days = ttl_days

    @property
    def enabled(self) -> bool:
        return self.client is not None

    @property
    def ttl_seconds(self) -> int:
        return self.ttl_days * 24 * 3600

    # -------------------------------------------------------------------------
    # Key Builders
    # -------------------------------------------------------------------------

    def _profile_key(self, profile_id: str) -> str:
        return f"{self.PROFILE_PREFIX}:{profile_id}"

    def _email_key(self, email: str) -> str:
        return f"{self.EMAIL_INDEX_PREFIX}:{email.strip().lower()}"

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def save_profile(
        self,
        candidate_name: str,
        candidate_email: str,
        context: EnrollmentContext,
        profile: KeystrokeProfile,
        now: Optional[datetime] = None,
    ) -> EnrollmentProfile:
        """Persist a new enrollment and index it by email."""
        if self.client is None:
            raise ProfileStoreError("Profile store is not configured")

        created_at = now or datetime.now(timezone.utc)
        record = EnrollmentProfile(
            id=new_profile_id(),
            candidate_name=candidate_name,
            candidate_email=candidate_email,
            context=context,
            created_at=created_at,
            expires_at=created_at + timedelta(days=self.ttl_days),
            profile=profile,
            enrollment_hash=compute_enrollment_hash(profile),
        )

        email_key = self._email_key(candidate_email)
        try:
            pipe = self.client.pipeline()
            pipe.setex(self._profile_key(record.id), self.ttl_seconds, record.model_dump_json(by_alias=True))
            pipe.zadd(email_key, {record.id: created_at.timestamp()})
            pipe.expire(email_key, self.ttl_seconds)
            pipe.execute()
        except RedisError as e:
            logger.error(f"Failed to save profile for {candidate_email}: {e}")
            raise ProfileStoreError(str(e)) from e

        logger.info(f"Enrollment profile {record.id} saved (context={context.value}, samples={profile.sample_size})")
        return record

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_profile_by_id(self, profile_id: str, now: Optional[datetime] = None) -> Optional[EnrollmentProfile]:
        """Return the profile, or None if missing, expired or unreadable."""
        if self.client is None or not profile_id:
            return None
        try:
            data = self.client.get(self._profile_key(profile_id))
        except RedisError as e:
            logger.error(f"Failed to get profile {profile_id}: {e}")
            return None
        if data is None:
            return None

        try:
            record = EnrollmentProfile.model_validate_json(data)
        except ValidationError as e:
            logger.warning(f"Malformed profile record {profile_id}: {e}")
            return None

        if record.expires_at <= (now or datetime.now(timezone.utc)):
            return None
        return record

    def get_profile_by_email(self, email: str, now: Optional[datetime] = None) -> Optional[EnrollmentProfile]:
        """Most recently created unexpired profile for the email."""
        if self.client is None or not email:
            return None
        email_key = self._email_key(email)
        try:
            profile_ids = self.client.zrevrange(email_key, 0, -1)
        except RedisError as e:
            logger.error(f"Failed to query profiles for {email}: {e}")
            return None

        for profile_id in profile_ids:
            record = self.get_profile_by_id(profile_id, now=now)
            if record is not None:
                return record
        return None
