"""
Redis Signaling Channel - the shared call record on Redis.

Layout for a call id X:
- call:X                       hash of scalar fields (JSON-encoded values)
- call:X:candidates:{uid}      list of candidates published by uid
- call:X:candidates-seen:{uid} fingerprints, so a candidate is appended once
- call:X:candidate-owners      participants that own a candidate list
- channel:call:X               pub/sub notification after every write

Each participant only writes its own fields, so writes are plain
field-scoped merges and never rewrite the whole record. Subscribers re-read
the full record on every notification and receive it as a CallRecord.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional, Sequence

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from peercall.config.constants import (
    CALL_CANDIDATE_OWNERS_KEY_SUFFIX,
    CALL_CANDIDATE_SEEN_KEY_SUFFIX,
    CALL_CANDIDATES_KEY_SUFFIX,
    CALL_CHANNEL_PREFIX,
    CALL_RECORD_KEY_PREFIX,
    GRACEFUL_SHUTDOWN_TIMEOUT_SEC,
    SIGNALING_LISTEN_TIMEOUT_SEC,
)
from peercall.config.redis import get_redis
from peercall.schemas.call import CallRecord
from peercall.services.call.exceptions import SignalingWriteError
from peercall.services.core.deduplicator import candidate_fingerprint
from peercall.services.metrics import signaling_write_errors
from peercall.services.protocols import (
    SnapshotCallback,
    SubscriptionErrorCallback,
    Unsubscribe,
)

logger = logging.getLogger(__name__)

CANDIDATES_FIELD = "candidates"


def _record_key(call_id: str) -> str:
    return f"{CALL_RECORD_KEY_PREFIX}{call_id}"


def _candidates_key(call_id: str, participant_id: str) -> str:
    return f"{_record_key(call_id)}{CALL_CANDIDATES_KEY_SUFFIX}{participant_id}"


def _seen_key(call_id: str, participant_id: str) -> str:
    return f"{_record_key(call_id)}{CALL_CANDIDATE_SEEN_KEY_SUFFIX}{participant_id}"


def _owners_key(call_id: str) -> str:
    return f"{_record_key(call_id)}{CALL_CANDIDATE_OWNERS_KEY_SUFFIX}"


def _channel(call_id: str) -> str:
    return f"{CALL_CHANNEL_PREFIX}{call_id}"


def _encode_fields(fields: Dict[str, Any]) -> Dict[str, str]:
    return {name: json.dumps(value) for name, value in fields.items()}


class _Subscription:
    """One snapshot listener task bound to a pub/sub connection."""

    def __init__(
        self,
        channel: "RedisSignalingChannel",
        call_id: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[SubscriptionErrorCallback] = None,
    ):
        self._channel = channel
        self._call_id = call_id
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    async def open(self):
        r = await self._channel.client()
        self._pubsub = r.pubsub()
        await self._pubsub.subscribe(_channel(self._call_id))
        self._task = asyncio.create_task(self._listen())

    async def _deliver(self):
        try:
            record = await self._channel.get(self._call_id)
        except RedisError as e:
            logger.error(f"[Signaling] Could not read {self._call_id}: {e}")
            return
        except ValueError as e:
            # Undecodable JSON or a record that fails validation
            logger.error(f"[Signaling] Skipping malformed snapshot of {self._call_id}: {e}")
            return
        try:
            await self._on_snapshot(record)
        except Exception as e:
            logger.error(f"[Signaling] Snapshot handler error for {self._call_id}: {e}")

    async def _listen(self):
        try:
            await self._deliver()
            while not self._closed:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=SIGNALING_LISTEN_TIMEOUT_SEC
                )
                if message is None or self._closed:
                    continue
                await self._deliver()
        except RedisError as e:
            if self._closed:
                return
            logger.error(f"[Signaling] Subscription to {self._call_id} lost: {e}")
            await self._report_lost(e)

    async def _report_lost(self, error: Exception):
        if self._on_error is None:
            return
        try:
            await self._on_error(error)
        except Exception as e:
            logger.error(f"[Signaling] Error handler failed for {self._call_id}: {e}")

    async def close(self):
        if self._closed:
            return
        self._closed = True

        task = self._task
        # The snapshot handler may unsubscribe from inside the listener task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.wait({task}, timeout=GRACEFUL_SHUTDOWN_TIMEOUT_SEC)

        try:
            await self._pubsub.unsubscribe(_channel(self._call_id))
            await self._pubsub.aclose()
        except RedisError as e:
            logger.warning(f"[Signaling] Error closing subscription to {self._call_id}: {e}")
        logger.info(f"[Signaling] Unsubscribed from {self._call_id}")


class RedisSignalingChannel:
    """SignalingChannel implementation backed by Redis hashes, lists and pub/sub."""

    def __init__(self, client: Optional[redis.Redis] = None):
        self._redis = client

    async def client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = await get_redis()
        return self._redis

    async def create(self, call_id: str, initial_fields: Dict[str, Any]) -> None:
        fields = dict(initial_fields)
        candidates = fields.pop(CANDIDATES_FIELD, None) or {}
        fields.setdefault("callId", call_id)

        try:
            r = await self.client()
            stale_keys = await self._candidate_keys(r, call_id)
            async with r.pipeline(transaction=True) as pipe:
                pipe.delete(_record_key(call_id), _owners_key(call_id), *stale_keys)
                pipe.hset(_record_key(call_id), mapping=_encode_fields(fields))
                for participant_id, items in candidates.items():
                    for candidate in items:
                        self._queue_candidate(pipe, call_id, participant_id, candidate)
                pipe.publish(_channel(call_id), "create")
                await pipe.execute()
        except RedisError as e:
            signaling_write_errors.labels(operation="create").inc()
            raise SignalingWriteError(f"Could not create call record {call_id}: {e}") from e

        logger.info(f"[Signaling] Created call record {call_id}")

    async def update(self, call_id: str, partial_fields: Dict[str, Any]) -> None:
        if CANDIDATES_FIELD in partial_fields:
            raise ValueError("Candidates are appended with append_candidate()")
        if not partial_fields:
            return

        try:
            r = await self.client()
            async with r.pipeline(transaction=True) as pipe:
                pipe.hset(_record_key(call_id), mapping=_encode_fields(partial_fields))
                pipe.publish(_channel(call_id), "update")
                await pipe.execute()
        except RedisError as e:
            signaling_write_errors.labels(operation="update").inc()
            raise SignalingWriteError(f"Could not update call record {call_id}: {e}") from e

        logger.debug(f"[Signaling] Updated {call_id}: {sorted(partial_fields)}")

    async def append_candidate(
        self, call_id: str, participant_id: str, candidate: Dict[str, Any]
    ) -> None:
        fingerprint = candidate_fingerprint(candidate)
        seen_key = _seen_key(call_id, participant_id)
        try:
            r = await self.client()
            async with r.pipeline(transaction=True) as pipe:
                # The fingerprint, the list entry and the owner are written
                # together, or not at all
                while True:
                    try:
                        await pipe.watch(seen_key)
                        if await pipe.sismember(seen_key, fingerprint):
                            await pipe.unwatch()
                            return
                        pipe.multi()
                        self._queue_candidate(pipe, call_id, participant_id, candidate)
                        pipe.publish(_channel(call_id), "candidate")
                        await pipe.execute()
                        return
                    except WatchError:
                        continue
        except RedisError as e:
            signaling_write_errors.labels(operation="append_candidate").inc()
            raise SignalingWriteError(
                f"Could not append candidate for {participant_id} to {call_id}: {e}"
            ) from e

    async def delete_fields(self, call_id: str, field_names: Sequence[str]) -> None:
        names = list(field_names)
        if not names:
            return

        try:
            r = await self.client()
            candidate_keys = await self._candidate_keys(r, call_id) if CANDIDATES_FIELD in names else []
            scalar_names = [name for name in names if name != CANDIDATES_FIELD]
            async with r.pipeline(transaction=True) as pipe:
                if scalar_names:
                    pipe.hdel(_record_key(call_id), *scalar_names)
                if CANDIDATES_FIELD in names:
                    pipe.delete(_owners_key(call_id), *candidate_keys)
                pipe.publish(_channel(call_id), "delete")
                await pipe.execute()
        except RedisError as e:
            signaling_write_errors.labels(operation="delete_fields").inc()
            raise SignalingWriteError(f"Could not delete fields {names} of {call_id}: {e}") from e

        logger.debug(f"[Signaling] Deleted {names} from {call_id}")

    async def get(self, call_id: str) -> Optional[CallRecord]:
        r = await self.client()
        raw = await r.hgetall(_record_key(call_id))
        if not raw:
            return None

        data = {name: json.loads(value) for name, value in raw.items()}
        data.setdefault("callId", call_id)

        candidates = {}
        for participant_id in sorted(await r.smembers(_owners_key(call_id))):
            items = await r.lrange(_candidates_key(call_id, participant_id), 0, -1)
            candidates[participant_id] = [json.loads(item) for item in items]
        data[CANDIDATES_FIELD] = candidates

        return CallRecord.model_validate(data)

    async def subscribe(
        self,
        call_id: str,
        on_snapshot: SnapshotCallback,
        on_error: Optional[SubscriptionErrorCallback] = None,
    ) -> Unsubscribe:
        subscription = _Subscription(self, call_id, on_snapshot, on_error)
        await subscription.open()
        logger.info(f"[Signaling] Subscribed to {call_id}")
        return subscription.close

    async def purge(self, call_id: str) -> None:
        """Remove every key of a call record without notifying subscribers."""
        r = await self.client()
        candidate_keys = await self._candidate_keys(r, call_id)
        await r.delete(_record_key(call_id), _owners_key(call_id), *candidate_keys)
        logger.info(f"[Signaling] Purged call record {call_id}")

    async def call_ids(self) -> list:
        """Ids of every call record currently stored."""
        r = await self.client()
        ids = []
        async for key in r.scan_iter(match=f"{CALL_RECORD_KEY_PREFIX}*"):
            suffix = key[len(CALL_RECORD_KEY_PREFIX):]
            # Candidate lists and sets share the prefix
            if ":" not in suffix:
                ids.append(suffix)
        return sorted(ids)

    # === Helpers ===

    @staticmethod
    def _queue_candidate(pipe, call_id: str, participant_id: str, candidate: Dict[str, Any]):
        pipe.sadd(_seen_key(call_id, participant_id), candidate_fingerprint(candidate))
        pipe.rpush(_candidates_key(call_id, participant_id), json.dumps(candidate))
        pipe.sadd(_owners_key(call_id), participant_id)

    @staticmethod
    async def _candidate_keys(r: redis.Redis, call_id: str) -> list:
        keys = []
        for participant_id in await r.smembers(_owners_key(call_id)):
            keys.append(_candidates_key(call_id, participant_id))
            keys.append(_seen_key(call_id, participant_id))
        return keys
