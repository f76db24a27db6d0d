"""
Per-operation fan-out of sync log lines to live viewers.

Each sync operation id maps to a channel holding the sinks currently watching
it. Publishing delivers a line to every sink of that operation. A sink whose
write fails (raises, returns False, or exceeds the write timeout) is dropped
without affecting the publisher or the other sinks.

Ordering:
    Every channel has its own asyncio.Lock held for the whole delivery of a
    line, so a sink sees lines in publish order. The subscription
    acknowledgement is written under the same lock, so it always precedes the
    first log line. No lock spans more than one operation.

There is no buffering: lines published while nobody is subscribed are gone.
"""

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict

from sinks import LogSink, SinkClosedError

logger = logging.getLogger(__name__)

DEFAULT_WRITE_TIMEOUT = 5.0


class DateTimeEncoder(json.JSONEncoder):
    """JSON encoder that renders datetimes as ISO-8601"""
    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


@dataclass(frozen=True)
class Subscription:
    """Handle returned by subscribe(); pass it back to unsubscribe()."""
    operation_id: int
    subscriber_id: int
    sink: Any = field(compare=False, repr=False)


class _Channel:
    __slots__ = ('sinks', 'lock')

    def __init__(self):
        self.sinks: Dict[int, LogSink] = {}
        self.lock = asyncio.Lock()


class LogBroadcaster:
    """Publish/subscribe hub for sync operation log lines (one instance per process)."""

    def __init__(self, write_timeout: float = DEFAULT_WRITE_TIMEOUT):
        self.write_timeout = write_timeout
        self._channels: Dict[int, _Channel] = {}
        self._ids = itertools.count(1)
        self._closed = False

    async def start(self) -> None:
        self._closed = False
        logger.info("Log broadcaster started")

    async def shutdown(self) -> None:
        """Close every sink and forget all channels."""
        self._closed = True
        channels = list(self._channels.items())
        self._channels.clear()

        for operation_id, channel in channels:
            async with channel.lock:
                sinks = list(channel.sinks.values())
                channel.sinks.clear()
            for sink in sinks:
                await self._close_sink(sink)

        logger.info(f"Log broadcaster stopped ({len(channels)} channels closed)")

    def subscriber_count(self, operation_id: int) -> int:
        channel = self._channels.get(operation_id)
        return len(channel.sinks) if channel else 0

    def has_channel(self, operation_id: int) -> bool:
        return operation_id in self._channels

    async def subscribe(self, operation_id: int, sink: LogSink) -> Subscription:
        """
        Register a sink for an operation's log lines.

        The sink receives a ``connected`` event before anything else.

        Raises:
            RuntimeError: Broadcaster has been shut down
            SinkClosedError: The acknowledgement could not be delivered
                (the sink is not registered)
        """
        ack = json.dumps({
            'type': 'connected',
            'message': f'Connected to sync operation {operation_id} log stream',
            'timestamp': datetime.now(timezone.utc).isoformat(),
        })

        while True:
            if self._closed:
                raise RuntimeError("Log broadcaster is shut down")
            channel = self._channels.setdefault(operation_id, _Channel())
            async with channel.lock:
                # Channel may have been emptied, deleted or shut down while we waited
                if self._closed or self._channels.get(operation_id) is not channel:
                    continue

                if not await self._deliver(sink, ack):
                    if not channel.sinks:
                        del self._channels[operation_id]
                    raise SinkClosedError(
                        f"Subscriber for operation {operation_id} closed before acknowledgement"
                    )

                subscriber_id = next(self._ids)
                channel.sinks[subscriber_id] = sink
                logger.debug(
                    f"Subscriber {subscriber_id} attached to operation {operation_id} "
                    f"({len(channel.sinks)} total)"
                )
                return Subscription(operation_id, subscriber_id, sink)

    async def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a subscription. Unknown or already-pruned subscriptions are ignored."""
        channel = self._channels.get(subscription.operation_id)
        if channel is None:
            return

        async with channel.lock:
            channel.sinks.pop(subscription.subscriber_id, None)
            if not channel.sinks and self._channels.get(subscription.operation_id) is channel:
                del self._channels[subscription.operation_id]

        logger.debug(
            f"Subscriber {subscription.subscriber_id} detached from operation {subscription.operation_id}"
        )

    async def publish(self, operation_id: int, event: Dict[str, Any]) -> int:
        """
        Deliver an event to every current subscriber of an operation.

        Never raises because of a subscriber.

        Returns:
            Number of sinks the event was delivered to
        """
        channel = self._channels.get(operation_id)
        if channel is None:
            return 0

        payload = json.dumps(event, cls=DateTimeEncoder)

        async with channel.lock:
            if not channel.sinks:
                return 0

            subscribers = list(channel.sinks.items())
            results = await asyncio.gather(
                *(self._deliver(sink, payload) for _, sink in subscribers)
            )

            dead = [(sub_id, sink) for (sub_id, sink), ok in zip(subscribers, results) if not ok]
            for sub_id, _ in dead:
                channel.sinks.pop(sub_id, None)

            if not channel.sinks and self._channels.get(operation_id) is channel:
                del self._channels[operation_id]

        for sub_id, sink in dead:
            logger.info(f"Dropped unresponsive subscriber {sub_id} from operation {operation_id}")
            await self._close_sink(sink)

        return len(subscribers) - len(dead)

    async def _deliver(self, sink: LogSink, payload: str) -> bool:
        """Write to one sink. Any failure marks it dead."""
        try:
            result = await asyncio.wait_for(sink.write(payload), timeout=self.write_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Subscriber write timed out after {self.write_timeout}s")
            return False
        except Exception as e:
            logger.debug(f"Subscriber write failed: {e}")
            return False
        return result is not False

    async def _close_sink(self, sink: LogSink) -> None:
        close = getattr(sink, 'close', None)
        if close is None:
            return
        try:
            result = close()
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.debug(f"Error closing subscriber: {e}")
