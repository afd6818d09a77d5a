"""Durable Redis-backed task queue with a bounded worker pool.

Layout under ``<prefix>:queue:<name>``:

- ``waiting``  list of messages ready to run
- ``active``   list of messages a worker has reserved
- ``delayed``  sorted set of messages waiting out a retry backoff, scored by
               the epoch millisecond at which they become runnable again
- ``failed``   list of messages abandoned after their last attempt
- ``reserved`` hash of active message -> epoch millisecond it was reserved

A retry re-queues the same message (same id and payload, attempt count
incremented). Producers never re-derive work on retry.

A message left in ``active`` past the visibility timeout (its worker died
or could not record the outcome) is recovered as a failed attempt.
"""

import asyncio
import json
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import redis.asyncio as redis
import structlog

from shards.core.redis import get_redis

logger = structlog.get_logger()

Handler = Callable[[Dict[str, Any]], Awaitable[Any]]


def _now_ms() -> int:
    return int(time.time() * 1000)


def backoff_delay_ms(base_ms: int, attempts_made: int) -> int:
    """Exponential backoff: base, 2*base, 4*base, ..."""
    return base_ms * 2 ** (max(attempts_made, 1) - 1)


class TaskQueue:
    """Producer/consumer side of one named queue."""

    def __init__(
        self,
        name: str,
        prefix: str = "shards",
        client_factory: Callable[[], Awaitable[redis.Redis]] = get_redis,
    ):
        self.name = name
        base = f"{prefix}:queue:{name}"
        self.waiting_key = f"{base}:waiting"
        self.active_key = f"{base}:active"
        self.delayed_key = f"{base}:delayed"
        self.failed_key = f"{base}:failed"
        self.reserved_key = f"{base}:reserved"
        self._client_factory = client_factory

    async def add(
        self,
        job_name: str,
        data: Dict[str, Any],
        attempts: int = 3,
        backoff_ms: int = 5000,
    ) -> str:
        """Enqueue a job and return its message id."""
        message = {
            "id": str(uuid.uuid4()),
            "name": job_name,
            "data": data,
            "attempts": attempts,
            "attempts_made": 0,
            "backoff_ms": backoff_ms,
        }
        client = await self._client_factory()
        await client.rpush(self.waiting_key, json.dumps(message, default=str))
        return message["id"]

    async def promote_delayed(self) -> int:
        """Move delayed messages whose backoff has elapsed back to waiting."""
        client = await self._client_factory()
        due = await client.zrangebyscore(self.delayed_key, "-inf", _now_ms())
        promoted = 0
        for raw in due:
            # zrem guards against two workers promoting the same message
            if await client.zrem(self.delayed_key, raw):
                await client.rpush(self.waiting_key, raw)
                promoted += 1
        return promoted

    async def reserve(self, timeout: float) -> Optional[str]:
        """Block up to `timeout` seconds for the next message; it moves to active."""
        client = await self._client_factory()
        raw = await client.blmove(self.waiting_key, self.active_key, timeout, "LEFT", "RIGHT")
        if raw is not None:
            await client.hset(self.reserved_key, raw, _now_ms())
        return raw

    async def complete(self, raw: str) -> None:
        client = await self._client_factory()
        await client.lrem(self.active_key, 1, raw)
        await client.hdel(self.reserved_key, raw)

    async def fail(self, raw: str, error: str) -> bool:
        """Record a failed attempt.

        Returns True when the message was rescheduled, False when it was
        abandoned to the failed list.
        """
        client = await self._client_factory()
        await client.lrem(self.active_key, 1, raw)
        await client.hdel(self.reserved_key, raw)
        return await self._retry_or_abandon(client, raw, error)

    async def recover_stale(self, visibility_timeout_ms: int) -> int:
        """Fail active messages reserved longer than the visibility timeout.

        An active message with no reservation time is stamped now and only
        recovered once it has aged out. Returns the number recovered.
        """
        client = await self._client_factory()
        now = _now_ms()
        recovered = 0
        for raw in await client.lrange(self.active_key, 0, -1):
            reserved_at = await client.hget(self.reserved_key, raw)
            if reserved_at is None:
                await client.hsetnx(self.reserved_key, raw, now)
                continue
            if now - int(reserved_at) < visibility_timeout_ms:
                continue
            # lrem guards against two workers recovering the same message
            if not await client.lrem(self.active_key, 1, raw):
                continue
            await client.hdel(self.reserved_key, raw)
            logger.warning("Recovering stale task", queue=self.name, reserved_ms=now - int(reserved_at))
            await self._retry_or_abandon(client, raw, "visibility timeout expired")
            recovered += 1
        return recovered

    async def _retry_or_abandon(self, client: redis.Redis, raw: str, error: str) -> bool:
        try:
            message = json.loads(raw)
        except ValueError:
            await client.rpush(self.failed_key, raw)
            logger.error("Discarding undecodable task", queue=self.name, error=error)
            return False

        message["attempts_made"] = int(message.get("attempts_made", 0)) + 1
        message["last_error"] = error

        if message["attempts_made"] >= int(message.get("attempts", 1)):
            await client.rpush(self.failed_key, json.dumps(message, default=str))
            logger.error(
                "Task abandoned after final attempt",
                queue=self.name,
                job=message.get("name"),
                message_id=message.get("id"),
                attempts=message["attempts_made"],
                data=message.get("data"),
                error=error,
            )
            return False

        delay = backoff_delay_ms(int(message.get("backoff_ms", 0)), message["attempts_made"])
        await client.zadd(self.delayed_key, {json.dumps(message, default=str): _now_ms() + delay})
        logger.warning(
            "Task failed, retry scheduled",
            queue=self.name,
            job=message.get("name"),
            message_id=message.get("id"),
            attempt=message["attempts_made"],
            delay_ms=delay,
            error=error,
        )
        return True

    async def counts(self) -> Dict[str, int]:
        client = await self._client_factory()
        return {
            "waiting": await client.llen(self.waiting_key),
            "active": await client.llen(self.active_key),
            "delayed": await client.zcard(self.delayed_key),
            "failed": await client.llen(self.failed_key),
        }


class QueueWorker:
    """Runs queue messages through named handlers with bounded concurrency."""

    def __init__(
        self,
        queue: TaskQueue,
        handlers: Dict[str, Handler],
        concurrency: int = 4,
        poll_timeout: float = 5.0,
        visibility_timeout: float = 600.0,
    ):
        self.queue = queue
        self.handlers = handlers
        self.concurrency = concurrency
        self.poll_timeout = poll_timeout
        self.visibility_timeout = visibility_timeout
        self._last_recovery: Optional[float] = None
        self._semaphore = asyncio.Semaphore(concurrency)
        self._in_flight: Set[asyncio.Task] = set()
        self._runner: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def start(self) -> None:
        if self.running:
            logger.warning("Queue worker already running", queue=self.queue.name)
            return
        self._stopping = False
        self._runner = asyncio.create_task(self._run())
        logger.info("Queue worker started", queue=self.queue.name, concurrency=self.concurrency)

    async def stop(self) -> None:
        """Stop polling and wait for in-flight tasks to settle."""
        self._stopping = True
        if self._runner is not None:
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
            self._runner = None
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        logger.info("Queue worker stopped", queue=self.queue.name)

    async def _run(self) -> None:
        while not self._stopping:
            await self._semaphore.acquire()
            try:
                await self.recover_if_due()
                await self.queue.promote_delayed()
                raw = await self.queue.reserve(self.poll_timeout)
            except asyncio.CancelledError:
                self._semaphore.release()
                raise
            except Exception as e:
                self._semaphore.release()
                logger.error("Queue poll failed", queue=self.queue.name, error=str(e))
                await asyncio.sleep(self.poll_timeout)
                continue

            if raw is None:
                self._semaphore.release()
                continue

            task = asyncio.create_task(self.process(raw))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def recover_if_due(self) -> int:
        """Recover stale active messages, at most twice per visibility timeout."""
        now = time.monotonic()
        if self._last_recovery is not None and now - self._last_recovery < self.visibility_timeout / 2:
            return 0
        self._last_recovery = now
        return await self.queue.recover_stale(int(self.visibility_timeout * 1000))

    async def process(self, raw: str) -> bool:
        """Run one reserved message. Returns True on success."""
        try:
            try:
                message = json.loads(raw)
                handler = self.handlers.get(message.get("name"))
                if handler is None:
                    raise LookupError(f"No handler for job {message.get('name')!r}")
                await handler(message.get("data") or {})
            except Exception as e:
                await self._record(self.queue.fail(raw, str(e)))
                return False
            await self._record(self.queue.complete(raw))
            return True
        finally:
            self._semaphore.release()

    async def _record(self, outcome: Awaitable[Any]) -> None:
        try:
            await outcome
        except Exception as e:
            # The message stays active until recover_stale picks it up
            logger.error("Failed to record task outcome", queue=self.queue.name, error=str(e))
