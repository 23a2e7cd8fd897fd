"""
Usage ledger - per-user, per-day totals of videos, tokens, API calls and cost.

A video transcript is processed in several chunks, each its own request.
Every chunk adds its tokens/cost/api call, but only the first chunk of a
video (per user, per day) bumps videos_processed. First-seen tracking is an
in-process set; a restart can count a video twice for that day, which is an
accepted approximation.

The write is a single INSERT ... ON CONFLICT (user_id, date) DO UPDATE that
adds to the existing row, so concurrent chunks never lose each other's deltas.
"""

import logging
import time
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import select, delete, func, case
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.models import UsageRecord

logger = logging.getLogger(__name__)

PURGE_INTERVAL_SECONDS = 3600

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def build_usage_upsert(dialect_name: str, values: dict):
    """
    Insert-or-add statement for one (user_id, date) row.

    Every numeric column on conflict becomes existing + incoming.
    """
    insert_fn = _DIALECT_INSERTS.get(dialect_name)
    if insert_fn is None:
        raise RuntimeError(f"Usage ledger has no upsert for dialect {dialect_name!r}")
    stmt = insert_fn(UsageRecord).values(**values)
    excluded = stmt.excluded
    return stmt.on_conflict_do_update(
        index_elements=[UsageRecord.user_id, UsageRecord.date],
        set_={
            "videos_processed": UsageRecord.videos_processed + excluded.videos_processed,
            "tokens_used": UsageRecord.tokens_used + excluded.tokens_used,
            "api_calls": UsageRecord.api_calls + excluded.api_calls,
            "cost_incurred": UsageRecord.cost_incurred + excluded.cost_incurred,
        },
    )


class UsageLedger:
    """Records usage deltas. Never raises to its caller."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        retention_days: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.retention_days = settings.USAGE_DEDUP_RETENTION_DAYS if retention_days is None else retention_days
        self.clock = clock
        self._seen: set[tuple[str, str, date]] = set()
        self._last_purge: Optional[float] = None

    def _purge_if_due(self, today: date):
        now = self.clock()
        if self._last_purge is not None and now - self._last_purge < PURGE_INTERVAL_SECONDS:
            return
        self._last_purge = now
        cutoff = today - timedelta(days=self.retention_days)
        stale = [key for key in self._seen if key[2] < cutoff]
        for key in stale:
            self._seen.discard(key)
        if stale:
            logger.debug(f"Purged {len(stale)} video dedup entries")

    def has_seen(self, user_id: str, video_id: str, day: date) -> bool:
        return (user_id, video_id, day) in self._seen

    def forget(self, user_id: Optional[str] = None):
        """Drop dedup entries for one user, or all of them."""
        if user_id is None:
            self._seen.clear()
        else:
            self._seen = {key for key in self._seen if key[0] != user_id}

    @property
    def tracked_videos(self) -> int:
        return len(self._seen)

    async def record_usage(
        self,
        user_id: str,
        extension_user_id: str,
        video_id: Optional[str],
        tokens_used: int,
        cost_incurred: float,
        day: Optional[date] = None,
        videos_processed: Optional[int] = None,
    ) -> bool:
        """
        Add one request's usage to the user's row for `day` (default: today, UTC).

        `video_id=None` is a manual report from a client that called the AI
        provider itself; it counts `videos_processed` (default 1) as given.

        Returns True if the write landed. Failures are logged, never raised.
        """
        day = day or utc_today()
        self._purge_if_due(day)

        first_seen = False
        if video_id is None:
            video_increment = 1 if videos_processed is None else max(int(videos_processed), 0)
        else:
            key = (user_id, video_id, day)
            # Mark before the first await so concurrent chunks of the same
            # video can't both count as new.
            first_seen = key not in self._seen
            if first_seen:
                self._seen.add(key)
            video_increment = 1 if first_seen else 0

        values = {
            "user_id": user_id,
            "extension_user_id": extension_user_id,
            "date": day,
            "videos_processed": video_increment,
            "tokens_used": max(int(tokens_used or 0), 0),
            "api_calls": 1,
            "cost_incurred": max(float(cost_incurred or 0), 0.0),
        }

        try:
            async with self.session_factory() as db:
                stmt = build_usage_upsert(db.get_bind().dialect.name, values)
                await db.execute(stmt)
                await db.commit()
        except Exception as e:
            if first_seen:
                # Let the next chunk of this video count it instead
                self._seen.discard((user_id, video_id, day))
            logger.error(
                f"Usage ledger write failed: {e}",
                extra={
                    "user_id": user_id,
                    "video_id": video_id,
                    "day": day.isoformat(),
                    "tokens_used": values["tokens_used"],
                },
                exc_info=True,
            )
            return False

        logger.debug(
            "Usage recorded",
            extra={"user_id": user_id, "video_id": video_id, "new_video": bool(video_increment)},
        )
        return True

    async def get_user_stats(self, db: AsyncSession, extension_user_id: str, today: Optional[date] = None) -> dict:
        """Totals plus today / 7-day / 30-day video counts for one user."""
        today = today or utc_today()
        week_start = today - timedelta(days=7)
        month_start = today - timedelta(days=30)

        def videos_since(condition):
            return func.coalesce(func.sum(case((condition, UsageRecord.videos_processed), else_=0)), 0)

        result = await db.execute(
            select(
                func.coalesce(func.sum(UsageRecord.videos_processed), 0),
                func.coalesce(func.sum(UsageRecord.tokens_used), 0),
                func.coalesce(func.sum(UsageRecord.api_calls), 0),
                func.coalesce(func.sum(UsageRecord.cost_incurred), 0),
                videos_since(UsageRecord.date == today),
                videos_since(UsageRecord.date > week_start),
                videos_since(UsageRecord.date > month_start),
            ).where(UsageRecord.extension_user_id == extension_user_id)
        )
        row = result.one()
        return {
            "total_videos": int(row[0]),
            "total_tokens": int(row[1]),
            "total_api_calls": int(row[2]),
            "total_cost": float(row[3]),
            "videos_today": int(row[4]),
            "videos_7d": int(row[5]),
            "videos_30d": int(row[6]),
        }

    async def get_usage_analytics(self, db: AsyncSession, days: int = 30, today: Optional[date] = None) -> list[dict]:
        """Per-day totals across all users for the last `days` days, newest first."""
        today = today or utc_today()
        since = today - timedelta(days=days)
        result = await db.execute(
            select(
                UsageRecord.date,
                func.count(func.distinct(UsageRecord.user_id)),
                func.sum(UsageRecord.videos_processed),
                func.sum(UsageRecord.tokens_used),
                func.sum(UsageRecord.api_calls),
                func.sum(UsageRecord.cost_incurred),
            )
            .where(UsageRecord.date > since)
            .group_by(UsageRecord.date)
            .order_by(UsageRecord.date.desc())
        )
        return [
            {
                "date": row[0].isoformat(),
                "active_users": int(row[1]),
                "videos_processed": int(row[2] or 0),
                "tokens_used": int(row[3] or 0),
                "api_calls": int(row[4] or 0),
                "cost_incurred": float(row[5] or 0),
            }
            for row in result.all()
        ]

    async def reset_usage(self, db: AsyncSession, extension_user_id: Optional[str] = None) -> int:
        """
        Delete usage history for one user, or everyone. Returns rows deleted.

        Clears the matching dedup entries too, so the next chunk of a video
        seen before the reset counts again.
        """
        stmt = delete(UsageRecord)
        if extension_user_id is not None:
            stmt = stmt.where(UsageRecord.extension_user_id == extension_user_id)
            user_ids = (await db.execute(
                select(UsageRecord.user_id).where(UsageRecord.extension_user_id == extension_user_id).distinct()
            )).scalars().all()
        result = await db.execute(stmt)
        await db.commit()

        if extension_user_id is None:
            self.forget()
        else:
            for user_id in user_ids:
                self.forget(user_id)

        logger.info(
            f"Usage history cleared: {result.rowcount} rows",
            extra={"extension_user_id": extension_user_id},
        )
        return result.rowcount
