"""
Redis connection and stream transport for the flow engine.

One cached async client serves three things:

- Session documents, transcripts and turn locks (chatflow.state.store)
- The inbound stream that channel adapters write user messages to
- The outbound stream the flow worker writes replies to

Streams:
    incoming_messages_stream   {"tenant_id", "session_id", "text", "message_id"?}
                               consumed by the `flow_workers` group, one
                               consumer per worker process (flow-{pid})
    outgoing_messages_stream   {"tenant_id", "session_id", "messages", "status"}
    dead_letter_stream         inbound entries the worker could not turn into
                               a conversation turn, with the error attached

Stream helpers translate Redis outages into HTTPException(503) so the API
surface and the worker report a busy transport the same way.
"""

import json
import logging
from datetime import datetime, UTC
from functools import lru_cache
from typing import Any

import redis.asyncio as redis
from fastapi import HTTPException
from redis import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError as RedisResponseError

from shared.config import get_settings

INCOMING_STREAM = "incoming_messages_stream"
OUTGOING_STREAM = "outgoing_messages_stream"
CONSUMER_GROUP = "flow_workers"
DEAD_LETTER_STREAM = "dead_letter_stream"
STREAM_MAX_LEN = 10000  # approximate MAXLEN applied on every XADD

logger = logging.getLogger(__name__)


@lru_cache
def get_redis_client() -> "redis.Redis[str]":
    """
    Shared client for sessions, locks and streams.

    Key patterns owned by the engine:
        - chatflow:session:{session_id}     session document (TTL SESSION_TTL_SECONDS)
        - chatflow:transcript:{session_id}  capped transcript list (same TTL)
        - chatflow:lock:{session_id}        turn lock (SESSION_LOCK_TIMEOUT_SECONDS)
    """
    settings = get_settings()

    try:
        client = redis.from_url(
            settings.REDIS_URL,
            max_connections=20,
            decode_responses=True,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        logger.info(
            f"Redis client ready for sessions and streams: {settings.REDIS_URL} "
            f"(max_connections=20, health_check_interval=30s)"
        )
        return client

    except RedisConnectionError as e:
        logger.error(f"Cannot reach Redis, sessions and streams unavailable: {e}", exc_info=True)
        raise


async def close_redis_client() -> None:
    """Close the shared client on worker or API shutdown."""
    try:
        await get_redis_client().close()
        logger.info("Redis client closed")
    except Exception as e:
        logger.warning(f"Error closing Redis client: {e}")


def _transport_unavailable(action: str, error: Exception) -> HTTPException:
    logger.error(f"Redis connection error while {action}: {error}")
    return HTTPException(
        status_code=503,
        detail="Message transport unavailable (Redis connection failed)",
    )


# =============================================================================
# Message streams
# =============================================================================


async def add_to_stream(
    stream: str,
    message: dict[str, Any],
    max_len: int = STREAM_MAX_LEN,
) -> str:
    """
    Append one conversation message (inbound or reply) to a stream.

    The payload travels JSON-encoded under the single field `data`.

    Returns:
        Stream entry id (e.g. "1700000000000-0")

    Raises:
        HTTPException: 503 if Redis is unreachable
    """
    client = get_redis_client()
    payload = json.dumps(message, ensure_ascii=False)

    try:
        entry_id = await client.xadd(stream, {"data": payload}, maxlen=max_len, approximate=True)
    except RedisConnectionError as e:
        raise _transport_unavailable(f"writing to '{stream}'", e) from e

    logger.debug(
        f"Stream entry {entry_id} written to '{stream}'",
        extra={"tenant_id": message.get("tenant_id"), "session_id": message.get("session_id")},
    )
    return entry_id


async def create_consumer_group(
    stream: str,
    group: str,
    start_id: str = "0",
) -> bool:
    """
    Make sure the worker group exists before the first read.

    Returns:
        True if the group was created, False if another worker created it first

    Raises:
        HTTPException: 503 on any other Redis error
    """
    client = get_redis_client()

    try:
        await client.xgroup_create(stream, group, id=start_id, mkstream=True)
    except RedisResponseError as e:
        if "BUSYGROUP" in str(e):
            logger.debug(f"Worker group '{group}' already registered on '{stream}'")
            return False
        logger.error(f"Could not register worker group '{group}' on '{stream}': {e}")
        raise HTTPException(status_code=503, detail="Failed to create consumer group") from e
    except RedisConnectionError as e:
        raise _transport_unavailable(f"registering group '{group}'", e) from e

    logger.info(f"Worker group '{group}' registered on '{stream}'")
    return True


async def read_from_stream(
    stream: str,
    group: str,
    consumer: str,
    count: int = 1,
    block_ms: int = 5000,
) -> list[tuple[str, dict[str, Any]]]:
    """
    Claim new inbound entries for one worker.

    Entries stay pending for this consumer until acknowledge_message() or
    move_to_dead_letter(). A payload that is not valid JSON is still
    returned, flagged with `_parse_error`, so the worker can dead-letter it.

    Returns:
        [(entry_id, payload), ...], empty when nothing arrived within block_ms

    Raises:
        HTTPException: 503 if Redis is unreachable
    """
    client = get_redis_client()

    try:
        response = await client.xreadgroup(
            groupname=group,
            consumername=consumer,
            streams={stream: ">"},
            count=count,
            block=block_ms,
        )
    except RedisConnectionError as e:
        raise _transport_unavailable(f"reading '{stream}'", e) from e
    except RedisResponseError as e:
        if "NOGROUP" in str(e):
            logger.warning(f"Worker group '{group}' missing on '{stream}', nothing to read")
            return []
        raise

    entries: list[tuple[str, dict[str, Any]]] = []
    for _stream_name, stream_entries in response or []:
        for entry_id, fields in stream_entries:
            raw = fields.get("data", "{}")
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"Stream entry {entry_id} is not JSON: {raw[:100]}")
                payload = {"_raw": raw, "_parse_error": True}
            entries.append((entry_id, payload))

    if entries:
        logger.debug(f"Worker {consumer} claimed {len(entries)} entries from '{stream}'")
    return entries


async def acknowledge_message(stream: str, group: str, message_id: str) -> int:
    """
    Mark an inbound entry as handled once its turn has been persisted.

    Returns:
        1 when acknowledged, 0 if it was already acknowledged

    Raises:
        HTTPException: 503 if Redis is unreachable
    """
    client = get_redis_client()

    try:
        acked = await client.xack(stream, group, message_id)
    except RedisConnectionError as e:
        raise _transport_unavailable(f"acknowledging {message_id}", e) from e

    if acked == 0:
        logger.warning(f"Stream entry {message_id} was already acknowledged")
    return acked


async def move_to_dead_letter(
    source_stream: str,
    group: str,
    message_id: str,
    message_data: dict[str, Any],
    error: str,
) -> str:
    """
    Park an inbound entry that produced no turn and acknowledge the original.

    The dead letter entry keeps the original payload and the error so an
    operator can replay it with add_to_stream() after fixing the cause.

    Returns:
        Dead letter entry id

    Raises:
        HTTPException: 503 if Redis is unreachable
    """
    client = get_redis_client()
    dead_letter = {
        "original_stream": source_stream,
        "original_id": message_id,
        "data": json.dumps(message_data, ensure_ascii=False),
        "error": str(error)[:1000],
        "failed_at": datetime.now(UTC).isoformat(),
        "consumer_group": group,
    }

    try:
        dead_letter_id = await client.xadd(
            DEAD_LETTER_STREAM, dead_letter, maxlen=STREAM_MAX_LEN, approximate=True
        )
        await client.xack(source_stream, group, message_id)
    except RedisConnectionError as e:
        raise _transport_unavailable(f"dead-lettering {message_id}", e) from e

    logger.warning(
        f"Stream entry {message_id} dead-lettered as {dead_letter_id}: {str(error)[:100]}",
        extra={
            "tenant_id": message_data.get("tenant_id"),
            "session_id": message_data.get("session_id"),
        },
    )
    return dead_letter_id
