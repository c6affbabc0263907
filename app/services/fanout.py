# app/services/fanout.py
"""
Live-update fan-out.

Two channels carry every accepted reading to dashboards:
  - StreamBroker   — in-process registry of open server-sent-event streams
                     (GET /api/v1/events). Always on.
  - RelayPublisher — MQTT publish on "<RELAY_CHANNEL>/<RELAY_EVENT>" for
                     dashboards subscribed through a broker. On when
                     MQTT_HOST is set.

Delivery is at-most-once on both: no acknowledgement, no replay. Dashboards
poll the query endpoints as a backstop.
"""

import asyncio
import json
import threading
import uuid
from typing import AsyncIterator, Optional
import paho.mqtt.client as mqtt
from fastapi import Request
from app.services.reading_parser import CounterReading
from app.utils.errors import ChannelUnavailable
from app.utils.logger import get_logger
from app.utils.time_utils import isoformat_z, utc_now

logger = get_logger(__name__)

EVENT_CONNECTED = "connected"
EVENT_COUNTER_UPDATE = "counter-update"


def format_frame(message: dict) -> str:
    """One SSE frame: a single data line terminated by a blank line."""
    return f"data: {json.dumps(message)}\n\n"


def keepalive_frame() -> str:
    # SSE comment line; EventSource ignores it but proxies see traffic
    return ": keepalive\n\n"


def connected_message() -> dict:
    return {
        "type": EVENT_CONNECTED,
        "message": "Connected to event stream",
        "timestamp": isoformat_z(utc_now()),
    }


class StreamBroker:
    """
    Registry of open stream subscribers keyed by id.
    Each subscriber owns a bounded asyncio.Queue of pre-formatted frames.
    Must be used from the event loop thread.
    """

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: dict[str, asyncio.Queue] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> tuple[str, asyncio.Queue]:
        subscriber_id = uuid.uuid4().hex
        queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[subscriber_id] = queue
        logger.info(f"[STREAM] + {subscriber_id[:8]} ({self.subscriber_count} open)")
        return subscriber_id, queue

    def unsubscribe(self, subscriber_id: str) -> None:
        if self._subscribers.pop(subscriber_id, None) is not None:
            logger.info(f"[STREAM] - {subscriber_id[:8]} ({self.subscriber_count} open)")

    def broadcast(self, message: dict) -> int:
        """
        Queue the message for every subscriber. A subscriber that cannot take
        the frame (queue full — a stalled client) is dropped.
        Returns the number of subscribers that received it.
        """
        frame = format_frame(message)
        delivered = 0
        for subscriber_id, queue in list(self._subscribers.items()):
            try:
                queue.put_nowait(frame)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"[STREAM] {subscriber_id[:8]} not draining — dropped")
                self.unsubscribe(subscriber_id)
        return delivered


async def event_stream(request: Request, broker: StreamBroker,
                       keepalive_seconds: float = 15.0) -> AsyncIterator[str]:
    """
    Body of one SSE response. Sends the synthetic "connected" frame first,
    then forwards broadcasts until the client goes away.
    """
    subscriber_id, queue = broker.subscribe()
    try:
        yield format_frame(connected_message())
        while True:
            if await request.is_disconnected():
                break
            try:
                frame = await asyncio.wait_for(queue.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield keepalive_frame()
                continue
            yield frame
    finally:
        broker.unsubscribe(subscriber_id)


class RelayPublisher:
    """
    Fire-and-forget MQTT publisher (QoS 0).
    Connection runs on paho's network thread; publish() fails fast with
    ChannelUnavailable while the broker is unreachable.
    """

    def __init__(self, host: str, port: int, topic: str, client_id: str,
                 username: Optional[str] = None, password: Optional[str] = None,
                 qos: int = 0):
        self.host = host
        self.port = port
        self.topic = topic
        self.qos = qos

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
        if username and password:
            self.client.username_pw_set(username, password)
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect

        self._connected = threading.Event()

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            logger.error(f"[RELAY] Broker {self.host}:{self.port} refused connection: {reason_code}")
            return
        self._connected.set()
        logger.info(f"[RELAY] Connected to {self.host}:{self.port} — publishing on {self.topic}")

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        self._connected.clear()
        logger.warning(f"[RELAY] Disconnected from {self.host}:{self.port} ({reason_code})")

    def connect(self) -> None:
        """Start connecting in the background. paho reconnects on its own afterwards."""
        self.client.connect_async(self.host, self.port)
        self.client.loop_start()

    def disconnect(self) -> None:
        self.client.disconnect()
        self.client.loop_stop()

    def publish(self, payload: dict) -> None:
        if not self.is_connected:
            raise ChannelUnavailable(f"Relay {self.host}:{self.port} not connected")
        try:
            info = self.client.publish(self.topic, json.dumps(payload), qos=self.qos)
        except (ValueError, OSError, RuntimeError) as e:
            # e.g. paho rejects wildcard topics with ValueError
            raise ChannelUnavailable(f"Relay publish failed: {e}") from e
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise ChannelUnavailable(f"Relay publish failed: {mqtt.error_string(info.rc)}")


class FanOut:
    """Publishes accepted readings on the stream broker and, if configured, the relay."""

    def __init__(self, broker: StreamBroker, relay: Optional[RelayPublisher] = None):
        self.broker = broker
        self.relay = relay

    def publish_reading(self, reading: CounterReading) -> None:
        payload = reading.to_payload()
        delivered = self.broker.broadcast({"type": EVENT_COUNTER_UPDATE, **payload})
        logger.debug(f"[STREAM] counter-update → {delivered} subscriber(s)")

        if self.relay is not None:
            self.relay.publish(payload)


def get_fanout(request: Request) -> FanOut:
    """FastAPI dependency — the app's fan-out."""
    return request.app.state.fanout
