"""
Flow Worker Entry Point
Background worker that runs conversation turns from the Redis inbound stream
"""
import asyncio
import logging
import os
import signal

from redis.exceptions import LockError

from chatflow.engine import ConversationEngine, InboundMessage, build_engine
from shared.logging_config import configure_logging
from shared.redis_client import (
    CONSUMER_GROUP,
    INCOMING_STREAM,
    OUTGOING_STREAM,
    acknowledge_message,
    add_to_stream,
    close_redis_client,
    create_consumer_group,
    move_to_dead_letter,
    read_from_stream,
)

# Configure structured JSON logging
configure_logging()
logger = logging.getLogger(__name__)

# Global flag for graceful shutdown
shutdown_event = asyncio.Event()


async def process_stream_message(
    engine: ConversationEngine, stream_msg_id: str, data: dict
) -> None:
    """
    Run one turn for a stream entry and publish the reply.

    Message format (incoming_messages_stream):
        {
            "tenant_id": "acme",
            "session_id": "wa-34612345678",
            "text": "Hola",
            "message_id": "wamid.123"
        }

    Message format (outgoing_messages_stream):
        {
            "tenant_id": "acme",
            "session_id": "wa-34612345678",
            "messages": ["¡Hola! ...", "..."],
            "status": "suspended"
        }

    The stream entry id is used as message_id when the producer sends none,
    so a redelivered entry is recognized by the engine.
    """
    if data.get("_parse_error"):
        raise ValueError("Unparseable stream payload")

    inbound = InboundMessage(
        tenant_id=data.get("tenant_id", ""),
        session_id=data.get("session_id", ""),
        text=data.get("text") or data.get("message_text") or "",
        message_id=data.get("message_id") or stream_msg_id,
    )

    logger.info(
        f"Stream message received: stream_msg_id={stream_msg_id}",
        extra={"tenant_id": inbound.tenant_id, "session_id": inbound.session_id},
    )

    reply = await engine.handle_message(inbound)

    if reply.duplicate:
        logger.info(
            f"Skipping publish for redelivered message {inbound.message_id}",
            extra={"tenant_id": inbound.tenant_id, "session_id": inbound.session_id},
        )
        return

    if reply.messages:
        await add_to_stream(
            OUTGOING_STREAM,
            {
                "tenant_id": inbound.tenant_id,
                "session_id": reply.session_id,
                "messages": reply.messages,
                "status": reply.status.value,
            },
        )


async def requeue_stream_message(stream_msg_id: str, data: dict) -> str:
    """
    Put an entry back on the inbound stream and acknowledge the original.

    Used when another process holds the session lock for too long. The
    original stream id is kept as message_id so the engine still recognizes
    a redelivery.
    """
    requeued = {**data, "message_id": data.get("message_id") or stream_msg_id}
    new_id = await add_to_stream(INCOMING_STREAM, requeued)
    await acknowledge_message(INCOMING_STREAM, CONSUMER_GROUP, stream_msg_id)
    logger.warning(
        f"Session busy, requeued stream message {stream_msg_id} as {new_id}",
        extra={"tenant_id": data.get("tenant_id"), "session_id": data.get("session_id")},
    )
    return new_id


async def consume_incoming_messages(engine: ConversationEngine) -> None:
    """
    Consume incoming_messages_stream with the flow_workers consumer group.

    Entries are acknowledged after the turn is persisted. Entries that fail
    are moved to the dead letter stream, except entries whose session is
    locked by another process, which are requeued.
    """
    consumer_name = f"flow-{os.getpid()}"

    logger.info(
        f"Initializing Redis Streams consumer | stream={INCOMING_STREAM} | "
        f"group={CONSUMER_GROUP} | consumer={consumer_name}"
    )
    await create_consumer_group(INCOMING_STREAM, CONSUMER_GROUP)

    try:
        while not shutdown_event.is_set():
            try:
                messages = await read_from_stream(
                    INCOMING_STREAM,
                    CONSUMER_GROUP,
                    consumer_name,
                    count=10,
                    block_ms=5000,
                )

                for stream_msg_id, data in messages:
                    try:
                        await process_stream_message(engine, stream_msg_id, data)
                        await acknowledge_message(INCOMING_STREAM, CONSUMER_GROUP, stream_msg_id)

                    except LockError:
                        await requeue_stream_message(stream_msg_id, data)

                    except ValueError as e:
                        logger.error(f"Invalid stream message {stream_msg_id}: {e}")
                        await move_to_dead_letter(
                            INCOMING_STREAM, CONSUMER_GROUP, stream_msg_id, data, str(e)
                        )

                    except Exception as e:
                        logger.error(
                            f"Error processing stream message {stream_msg_id}: {e}",
                            exc_info=True,
                        )
                        try:
                            await move_to_dead_letter(
                                INCOMING_STREAM, CONSUMER_GROUP, stream_msg_id, data, str(e)
                            )
                        except Exception as dlq_error:
                            logger.error(f"Failed to move to DLQ: {dlq_error}")

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error reading from stream: {e}", exc_info=True)
                # Brief backoff on error before retrying
                await asyncio.sleep(1)

    except asyncio.CancelledError:
        logger.info("Stream consumer cancelled")
        raise


async def main():
    """Flow worker main entry point"""
    logger.info("Flow worker started")

    engine = build_engine()
    loop = asyncio.get_running_loop()

    def handle_shutdown_signal():
        logger.info("Received shutdown signal, initiating graceful shutdown...")
        shutdown_event.set()

    try:
        loop.add_signal_handler(signal.SIGTERM, handle_shutdown_signal)
        loop.add_signal_handler(signal.SIGINT, handle_shutdown_signal)
        logger.info("Signal handlers registered")
    except NotImplementedError:
        logger.warning("Signal handlers not supported on this platform")

    consumer_task = asyncio.create_task(consume_incoming_messages(engine))

    try:
        await shutdown_event.wait()
    except asyncio.CancelledError:
        logger.info("Main loop cancelled")
    finally:
        logger.info("Shutting down flow worker...")
        consumer_task.cancel()
        await asyncio.gather(consumer_task, return_exceptions=True)
        await close_redis_client()
        logger.info("Flow worker stopped")


if __name__ == "__main__":
    logger.info("Starting Chatflow Worker")
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    finally:
        logger.info("Flow worker exited")
