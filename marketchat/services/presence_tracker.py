import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from marketchat.errors import NotAvailable
from marketchat.repositories.base import ProfileStore
from marketchat.schemas.chat import PresenceStatus
from marketchat.utils.calls import bounded


logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def humanize_last_seen(last_seen: datetime, now: Optional[datetime] = None) -> str:
    """Bucket the time since ``last_seen`` into a short label."""
    now = now or utcnow()
    if last_seen.tzinfo is None:
        last_seen = last_seen.replace(tzinfo=timezone.utc)
    minutes = max(0, int((now - last_seen).total_seconds() // 60))
    if minutes < 1:
        return "just now"
    if minutes < 60:
        return f"{minutes} min ago"
    if minutes < 24 * 60:
        return f"{minutes // 60} h ago"
    return f"{minutes // (24 * 60)} d ago"


class PresenceTracker:
    """
    Online flag and last-seen time on the user's profile.

    Written only on explicit transitions (first chat opened, last chat closed),
    never on a timer, so a killed tab can leave a stale "online"; readers fall
    back on the last-seen label.
    """

    def __init__(self, profiles: ProfileStore, timeout: float = 10.0, clock: Callable[[], datetime] = utcnow) -> None:
        self._profiles = profiles
        self._timeout = timeout
        self._clock = clock

    async def set_online(self, user_id: str, is_online: bool) -> bool:
        try:
            updated = await bounded(self._profiles.set_presence(user_id, is_online, self._clock()), self._timeout)
        except NotAvailable as exc:
            logger.warning("Presence not recorded for %s: %s", user_id, exc)
            return False
        if not updated:
            logger.info("No profile for %s, presence not recorded", user_id)
        else:
            logger.debug("Presence for %s set to %s", user_id, "online" if is_online else "offline")
        return updated

    async def get_status(self, user_id: str) -> PresenceStatus:
        try:
            profile = await bounded(self._profiles.get(user_id), self._timeout)
        except NotAvailable as exc:
            logger.warning("Presence lookup for %s skipped: %s", user_id, exc)
            profile = None
        if not profile:
            return PresenceStatus(user_id=user_id)
        last_seen = profile.get("last_seen")
        return PresenceStatus(
            user_id=user_id,
            online=bool(profile.get("is_online")),
            last_seen=last_seen,
            last_seen_text=humanize_last_seen(last_seen, self._clock()) if last_seen else None,
        )

    async def get_last_seen(self, user_id: str) -> Optional[str]:
        return (await self.get_status(user_id)).last_seen_text

    async def ensure_profile(self, user_id: str, full_name: Optional[str] = None) -> bool:
        """Create a bare profile for an authenticated user seen for the first time."""
        try:
            if await bounded(self._profiles.get(user_id), self._timeout):
                return False
            await bounded(self._profiles.upsert(user_id, full_name), self._timeout)
        except NotAvailable as exc:
            logger.warning("Profile for %s not mirrored: %s", user_id, exc)
            return False
        logger.info("Mirrored profile for %s", user_id)
        return True
