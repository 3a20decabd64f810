"""
Durable per-(identity, content) view counters.

check_and_increment is a single conditional increment in the store
("increment if views < limit"), never a read followed by a write. Calls for
the same key behave as if serialized, across threads and across service
instances; no in-process locks are involved.

Backends:
- SqlViewMeter: INSERT .. ON CONFLICT DO NOTHING, then
  UPDATE .. SET views = views + 1 WHERE .. AND views < :limit
- RedisViewMeter: one Lua script per call on a hash per key
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

import redis
from sqlalchemy import and_, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from paywall.identity.models import Identity
from paywall.metering.models import Granted, MeterResult, QuotaExceeded
from paywall.models.view_record import ViewRecord
from paywall.platform.errors import TransientStoreError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "article"

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ViewMeter(Protocol):
    def check_and_increment(
        self,
        identity: Identity,
        content_id: str,
        limit: int,
        *,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> MeterResult:
        ...


class SqlViewMeter:
    """View meter backed by the view_records table."""

    def __init__(self, db_session: Session, clock: Optional[Clock] = None) -> None:
        self.db = db_session
        self._clock = clock or _utcnow

    def check_and_increment(
        self,
        identity: Identity,
        content_id: str,
        limit: int,
        *,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> MeterResult:
        identity_key = identity.key
        now = self._clock()
        key_filter = and_(
            ViewRecord.identity_key == identity_key,
            ViewRecord.content_type == content_type,
            ViewRecord.content_id == content_id,
        )

        try:
            self._ensure_record(identity_key, content_type, content_id, now)

            result = self.db.execute(
                update(ViewRecord)
                .where(key_filter, ViewRecord.views < limit)
                .values(views=ViewRecord.views + 1, last_viewed_at=now)
                .execution_options(synchronize_session=False)
            )
            granted = result.rowcount == 1
            views = self.db.execute(select(ViewRecord.views).where(key_filter)).scalar_one()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                "view_meter.store_failed",
                extra={"identity_key": identity_key, "content_id": content_id, "error": str(e)},
            )
            raise TransientStoreError("view meter increment", cause=e) from e

        if granted:
            return Granted(views_after=views)
        return QuotaExceeded(views_before=views)

    def current_views(
        self,
        identity: Identity,
        content_id: str,
        *,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> int:
        try:
            views = self.db.execute(
                select(ViewRecord.views).where(
                    ViewRecord.identity_key == identity.key,
                    ViewRecord.content_type == content_type,
                    ViewRecord.content_id == content_id,
                )
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise TransientStoreError("view meter read", cause=e) from e
        return views or 0

    def _ensure_record(self, identity_key: str, content_type: str, content_id: str, now: datetime) -> None:
        """Materialise the counter at views=0 if this key has never been seen."""
        values = {
            "id": str(uuid.uuid4()),
            "identity_key": identity_key,
            "content_type": content_type,
            "content_id": content_id,
            "views": 0,
            "last_viewed_at": now,
        }
        conflict_columns = ["identity_key", "content_type", "content_id"]
        dialect = self.db.get_bind().dialect.name

        if dialect == "postgresql":
            stmt = postgresql.insert(ViewRecord).values(**values).on_conflict_do_nothing(
                index_elements=conflict_columns
            )
            self.db.execute(stmt)
        elif dialect == "sqlite":
            stmt = sqlite.insert(ViewRecord).values(**values).on_conflict_do_nothing(
                index_elements=conflict_columns
            )
            self.db.execute(stmt)
        else:
            # Nothing else has been written in this transaction yet, so a
            # rollback after a lost insert race discards nothing.
            try:
                self.db.execute(insert(ViewRecord).values(**values))
            except IntegrityError:
                self.db.rollback()


# KEYS[1] = counter hash; ARGV[1] = limit; ARGV[2] = ISO timestamp
CHECK_AND_INCREMENT_LUA = """
redis.call('HSETNX', KEYS[1], 'views', 0)
local views = tonumber(redis.call('HGET', KEYS[1], 'views'))
local limit = tonumber(ARGV[1])
if views < limit then
  views = redis.call('HINCRBY', KEYS[1], 'views', 1)
  redis.call('HSET', KEYS[1], 'last_viewed_at', ARGV[2])
  return {1, views}
end
return {0, views}
"""

REDIS_KEY_PREFIX = "paywall:views:v1"


class RedisViewMeter:
    """View meter backed by Redis; the Lua script runs atomically on the server."""

    def __init__(self, client: redis.Redis, clock: Optional[Clock] = None) -> None:
        self._redis = client
        self._clock = clock or _utcnow
        self._script = client.register_script(CHECK_AND_INCREMENT_LUA)

    @classmethod
    def from_url(cls, redis_url: str, *, timeout_seconds: float = 2.0) -> "RedisViewMeter":
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=timeout_seconds,
            socket_timeout=timeout_seconds,
        )
        return cls(client)

    @staticmethod
    def _key(identity: Identity, content_type: str, content_id: str) -> str:
        return f"{REDIS_KEY_PREFIX}:{identity.key}:{content_type}:{content_id}"

    def check_and_increment(
        self,
        identity: Identity,
        content_id: str,
        limit: int,
        *,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> MeterResult:
        key = self._key(identity, content_type, content_id)
        try:
            granted, views = self._script(keys=[key], args=[int(limit), self._clock().isoformat()])
        except redis.RedisError as e:
            logger.error(
                "view_meter.redis_failed",
                extra={"identity_key": identity.key, "content_id": content_id, "error": str(e)},
            )
            raise TransientStoreError("view meter increment", cause=e) from e

        if int(granted) == 1:
            return Granted(views_after=int(views))
        return QuotaExceeded(views_before=int(views))
