"""Redis implementation of DelayScheduler.

Visibility times live in a sorted set; envelopes live in a hash. Receiving
and acknowledging run as Lua scripts so that claiming a trigger, bumping its
delivery count and issuing a new receipt happen atomically across
competing consumers.

Key structure (the hash tag keeps all keys of one queue in one cluster slot):
- {prefix}:{{queue}}:pending  - ZSET delivery_id -> visible-at epoch seconds
- {prefix}:{{queue}}:messages - HASH delivery_id -> envelope JSON
- {prefix}:{{queue}}:dead     - HASH delivery_id -> envelope JSON
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import redis.asyncio as redis
from pydantic import BaseModel, ValidationError

from stepwise.config.models.queue import PlanQueueConfig
from stepwise.observability.logging import get_logger
from stepwise.observability.metrics import TRIGGERS_DEAD_LETTERED
from stepwise.planning.errors import InvalidArgumentError, QueueConnectionError, QueueError
from stepwise.planning.models import DeliveryHandle, PlanTrigger, QueuedTrigger, utc_now
from stepwise.planning.queue import DelayScheduler

logger = get_logger(__name__)

# KEYS: pending, messages, dead
# ARGV: now, limit, next_visible_at, max_deliveries, receipt_nonce
RECEIVE_SCRIPT = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, tonumber(ARGV[2]))
local delivered = {}
local dead = {}
for _, id in ipairs(ids) do
  local raw = redis.call('HGET', KEYS[2], id)
  if not raw then
    redis.call('ZREM', KEYS[1], id)
  else
    local envelope = cjson.decode(raw)
    envelope['dequeue_count'] = envelope['dequeue_count'] + 1
    if envelope['dequeue_count'] > tonumber(ARGV[4]) then
      redis.call('ZREM', KEYS[1], id)
      redis.call('HDEL', KEYS[2], id)
      redis.call('HSET', KEYS[3], id, cjson.encode(envelope))
      table.insert(dead, id)
    else
      envelope['receipt'] = ARGV[5] .. ':' .. id
      envelope['next_visible_at'] = tonumber(ARGV[3])
      local encoded = cjson.encode(envelope)
      redis.call('HSET', KEYS[2], id, encoded)
      redis.call('ZADD', KEYS[1], ARGV[3], id)
      table.insert(delivered, encoded)
    end
  end
end
return {delivered, dead}
"""

# KEYS: pending, messages
# ARGV: delivery_id, receipt
ACKNOWLEDGE_SCRIPT = """
local raw = redis.call('HGET', KEYS[2], ARGV[1])
if not raw then
  return 0
end
local envelope = cjson.decode(raw)
if envelope['receipt'] ~= ARGV[2] then
  return 0
end
redis.call('HDEL', KEYS[2], ARGV[1])
redis.call('ZREM', KEYS[1], ARGV[1])
return 1
"""


class _Envelope(BaseModel):
    """Stored form of a queued trigger."""

    delivery_id: str
    receipt: str
    trigger: PlanTrigger
    dequeue_count: int = 0
    inserted_at: datetime
    next_visible_at: float

    def to_queued(self) -> QueuedTrigger:
        return QueuedTrigger(
            delivery_id=self.delivery_id,
            receipt=self.receipt,
            trigger=self.trigger,
            dequeue_count=self.dequeue_count,
            inserted_at=self.inserted_at,
            next_visible_at=datetime.fromtimestamp(self.next_visible_at, UTC),
        )


class RedisDelayScheduler(DelayScheduler):
    """Redis-backed delay queue with visibility timeouts and dead-lettering."""

    def __init__(
        self,
        client: redis.Redis,
        config: PlanQueueConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize Redis delay queue.

        Args:
            client: Redis client instance
            config: Queue configuration (uses defaults if not provided)
            clock: Time source, injectable for tests
        """
        self._client = client
        self._config = config or PlanQueueConfig(backend="redis")
        self._clock = clock
        self._receive_script = client.register_script(RECEIVE_SCRIPT)
        self._acknowledge_script = client.register_script(ACKNOWLEDGE_SCRIPT)

    def _key(self, suffix: str) -> str:
        return f"{self._config.key_prefix}:{{{self._config.queue_name}}}:{suffix}"

    def _parse_envelopes(self, values: list[str | bytes]) -> list[QueuedTrigger]:
        try:
            return [_Envelope.model_validate_json(raw).to_queued() for raw in values]
        except ValidationError as e:
            logger.error(
                "trigger_envelope_invalid",
                queue=self._config.queue_name,
                error=str(e),
            )
            raise QueueError(f"Queue holds an invalid trigger envelope: {e}", cause=e) from e

    @property
    def _pending_key(self) -> str:
        return self._key("pending")

    @property
    def _messages_key(self) -> str:
        return self._key("messages")

    @property
    def _dead_key(self) -> str:
        return self._key("dead")

    async def schedule(
        self,
        trigger: PlanTrigger,
        not_before: timedelta,
    ) -> DeliveryHandle:
        """Enqueue a trigger hidden for `not_before`."""
        if not_before < timedelta(0):
            raise InvalidArgumentError("not_before must not be negative")

        now = self._clock()
        visible_at = now + not_before
        envelope = _Envelope(
            delivery_id=uuid4().hex,
            receipt=uuid4().hex,
            trigger=trigger,
            inserted_at=now,
            next_visible_at=visible_at.timestamp(),
        )

        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.hset(self._messages_key, envelope.delivery_id, envelope.model_dump_json())
                pipe.zadd(self._pending_key, {envelope.delivery_id: envelope.next_visible_at})
                await pipe.execute()
        except redis.RedisError as e:
            logger.error(
                "trigger_schedule_error",
                plan_id=str(trigger.plan_id),
                error=str(e),
            )
            raise QueueConnectionError(f"Failed to schedule trigger: {e}", cause=e) from e

        logger.debug(
            "trigger_enqueued",
            delivery_id=envelope.delivery_id,
            plan_id=str(trigger.plan_id),
            visible_at=visible_at.isoformat(),
        )

        return DeliveryHandle(
            delivery_id=envelope.delivery_id,
            receipt=envelope.receipt,
            delivery_time=visible_at,
        )

    async def receive(
        self,
        max_messages: int = 1,
        visibility_timeout: timedelta | None = None,
    ) -> list[QueuedTrigger]:
        """Atomically claim visible triggers."""
        timeout = visibility_timeout or timedelta(
            seconds=self._config.visibility_timeout_seconds
        )
        now = self._clock()

        try:
            delivered, dead = await self._receive_script(
                keys=[self._pending_key, self._messages_key, self._dead_key],
                args=[
                    now.timestamp(),
                    max_messages,
                    (now + timeout).timestamp(),
                    self._config.max_deliveries,
                    uuid4().hex,
                ],
            )
        except redis.RedisError as e:
            logger.error("trigger_receive_error", error=str(e))
            raise QueueConnectionError(f"Failed to receive triggers: {e}", cause=e) from e

        for delivery_id in dead:
            TRIGGERS_DEAD_LETTERED.labels(queue=self._config.queue_name).inc()
            logger.warning(
                "trigger_dead_lettered",
                delivery_id=delivery_id.decode() if isinstance(delivery_id, bytes) else delivery_id,
                queue=self._config.queue_name,
            )

        return self._parse_envelopes(delivered)

    async def acknowledge(self, delivery: QueuedTrigger) -> bool:
        """Delete a delivery if its receipt is still current."""
        try:
            deleted = await self._acknowledge_script(
                keys=[self._pending_key, self._messages_key],
                args=[delivery.delivery_id, delivery.receipt],
            )
        except redis.RedisError as e:
            logger.error(
                "trigger_acknowledge_error",
                delivery_id=delivery.delivery_id,
                error=str(e),
            )
            raise QueueConnectionError(f"Failed to acknowledge trigger: {e}", cause=e) from e

        return bool(deleted)

    async def get_dead_letters(self, limit: int = 100) -> list[QueuedTrigger]:
        """List dead-lettered triggers."""
        try:
            values = await self._client.hvals(self._dead_key)
        except redis.RedisError as e:
            logger.error("dead_letter_list_error", error=str(e))
            raise QueueConnectionError(f"Failed to list dead letters: {e}", cause=e) from e

        return self._parse_envelopes(values[:limit])
