# app/services/dashboard_client.py
"""
Dashboard client — the consumer side of the live-update channel.

Keeps the same state the browser dashboard keeps (current counts, a short
"recent" window and a long "all logs" window) and feeds it from two paths
at once:
  - a live channel: the SSE stream at /events, or the MQTT relay when one
    is configured. Reconnects after a fixed delay.
  - a fixed-interval poll of /counter and /history that fully replaces the
    lists, so a dead channel can never leave the view stale for long.

Usage:
    state = DashboardState()
    client = DashboardClient("http://localhost:8080/api/v1", state)
    await client.run()
"""

import asyncio
import json
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Iterable, Optional
import httpx
import paho.mqtt.client as mqtt
from app.services.event_derivation import (
    FILTER_ALL, DerivedEvent, derive_events, export_csv, filter_logs, paginate,
)
from app.services.fanout import EVENT_CONNECTED, EVENT_COUNTER_UPDATE
from app.services.reading_parser import CounterReading
from app.utils.errors import InvalidInput
from app.utils.logger import get_logger
from app.utils.time_utils import utc_now

logger = get_logger(__name__)

RECENT_LIMIT = 50
ALL_LOGS_LIMIT = 1000
POLL_INTERVAL_SECONDS = 10
RECONNECT_DELAY_SECONDS = 5


@dataclass
class DashboardView:
    rows: list[CounterReading]
    events: list[DerivedEvent]
    page: int
    total_pages: int
    total_rows: int


@dataclass
class DashboardState:
    current: CounterReading = field(default_factory=CounterReading.initial)
    recent: list[CounterReading] = field(default_factory=list)
    all_logs: list[CounterReading] = field(default_factory=list)
    connected: bool = False
    last_update: Optional[datetime] = None

    @property
    def status_label(self) -> str:
        return "Conectado" if self.connected else "Desconectado"

    def mark_connected(self) -> None:
        self.connected = True

    def mark_disconnected(self) -> None:
        self.connected = False

    @staticmethod
    def _prepend(rows: list[CounterReading], reading: CounterReading, cap: int) -> list[CounterReading]:
        if reading in rows:
            return rows
        return [reading, *rows][:cap]

    def apply_update(self, reading: CounterReading) -> None:
        """Live update: prepend to both windows (once), keep them capped.

        A replay of a reading already in the window leaves `current` alone.
        """
        if reading not in self.recent and reading not in self.all_logs:
            self.current = reading
        self.recent = self._prepend(self.recent, reading, RECENT_LIMIT)
        self.all_logs = self._prepend(self.all_logs, reading, ALL_LOGS_LIMIT)
        self.last_update = utc_now()

    def apply_poll(self, current: CounterReading, recent: list[CounterReading],
                   all_logs: list[CounterReading]) -> None:
        """Poll result: replace everything."""
        self.current = current
        self.recent = list(recent[:RECENT_LIMIT])
        self.all_logs = list(all_logs[:ALL_LOGS_LIMIT])
        self.last_update = utc_now()

    def filtered_view(self, event_type: str = FILTER_ALL, day: Optional[date] = None,
                      page: int = 1) -> DashboardView:
        filtered = filter_logs(self.all_logs, event_type, day)
        # Derive over the whole filtered list, then page rows and events together
        pairs, total_pages = paginate(list(zip(filtered, derive_events(filtered))), page)
        return DashboardView(
            rows=[reading for reading, _ in pairs],
            events=[event for _, event in pairs],
            page=min(max(page, 1), total_pages),
            total_pages=total_pages,
            total_rows=len(filtered),
        )

    def export_csv(self, event_type: str = FILTER_ALL, day: Optional[date] = None) -> str:
        return export_csv(filter_logs(self.all_logs, event_type, day))


def parse_sse_line(line: str) -> Optional[dict]:
    """Decode one `data: <json>` line. Comments, blank lines and junk give None."""
    if not line.startswith("data:"):
        return None
    try:
        message = json.loads(line[len("data:"):].strip())
    except json.JSONDecodeError:
        logger.warning(f"Undecodable stream frame: {line[:80]!r}")
        return None
    return message if isinstance(message, dict) else None


def parse_sse_lines(lines: Iterable[str]) -> list[dict]:
    return [m for m in (parse_sse_line(line) for line in lines) if m is not None]


def _to_readings(rows: list) -> list[CounterReading]:
    readings = []
    for row in rows or []:
        try:
            readings.append(CounterReading.from_payload(row))
        except InvalidInput as e:
            logger.warning(f"Skipping malformed history row: {e}")
    return readings


class RelayListener:
    """
    MQTT subscription to the relay topic. Callbacks fire on paho's thread;
    messages are handed to `on_message` on the given event loop.
    """

    def __init__(self, host: str, port: int, topic: str,
                 on_message: Callable[[dict], None], loop: asyncio.AbstractEventLoop,
                 client_id: str = "people-counter-dashboard",
                 username: Optional[str] = None, password: Optional[str] = None):
        self.host = host
        self.port = port
        self.topic = topic
        self.on_message = on_message
        self.loop = loop

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
        if username and password:
            self.client.username_pw_set(username, password)
        self.client.reconnect_delay_set(min_delay=RECONNECT_DELAY_SECONDS,
                                        max_delay=RECONNECT_DELAY_SECONDS)
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message
        self._connected = threading.Event()

    def _emit(self, message: dict) -> None:
        self.loop.call_soon_threadsafe(self.on_message, message)

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            logger.error(f"[RELAY] Subscription refused by {self.host}: {reason_code}")
            return
        self._connected.set()
        client.subscribe(self.topic)
        self._emit({"type": EVENT_CONNECTED})

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        self._connected.clear()
        logger.warning(f"[RELAY] Lost relay connection ({reason_code}), retrying in "
                       f"{RECONNECT_DELAY_SECONDS}s")
        self._emit({"type": "disconnected"})

    def _on_message(self, client, userdata, msg):
        try:
            payload = json.loads(msg.payload.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning(f"[RELAY] Undecodable message on {msg.topic}")
            return
        if isinstance(payload, dict):
            self._emit({"type": EVENT_COUNTER_UPDATE, **payload})

    def start(self) -> None:
        self.client.connect_async(self.host, self.port)
        self.client.loop_start()

    def stop(self) -> None:
        self.client.disconnect()
        self.client.loop_stop()


class DashboardClient:
    def __init__(self, base_url: str, state: DashboardState,
                 poll_interval: float = POLL_INTERVAL_SECONDS,
                 reconnect_delay: float = RECONNECT_DELAY_SECONDS,
                 api_key: Optional[str] = None,
                 relay: Optional[dict] = None):
        self.base_url = base_url.rstrip("/")
        self.state = state
        self.poll_interval = poll_interval
        self.reconnect_delay = reconnect_delay
        self.headers = {"X-API-Key": api_key} if api_key else {}
        self.relay = relay            # {"host", "port", "topic", ...} to use MQTT instead of SSE
        self._stopped = asyncio.Event()

    def stop(self) -> None:
        self._stopped.set()

    def handle_message(self, message: dict) -> None:
        kind = message.get("type")
        if kind == EVENT_CONNECTED:
            self.state.mark_connected()
            logger.info("✅ Live channel connected — awaiting data")
        elif kind == "disconnected":
            self.state.mark_disconnected()
        elif kind == EVENT_COUNTER_UPDATE:
            try:
                reading = CounterReading.from_payload(message)
            except InvalidInput as e:
                logger.warning(f"Ignoring malformed counter-update: {e}")
                return
            self.state.apply_update(reading)
        else:
            logger.debug(f"Ignoring stream message type={kind!r}")

    async def _fetch_history(self, client: httpx.AsyncClient, limit: int) -> list[CounterReading]:
        response = await client.get("/history", params={"limit": limit})
        response.raise_for_status()
        return _to_readings(response.json().get("history", []))

    async def poll_once(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/counter")
        response.raise_for_status()
        current = CounterReading.from_payload(response.json()["current"])
        recent = await self._fetch_history(client, RECENT_LIMIT)
        all_logs = await self._fetch_history(client, ALL_LOGS_LIMIT)
        self.state.apply_poll(current, recent, all_logs)

    async def poll_forever(self, client: httpx.AsyncClient) -> None:
        while not self._stopped.is_set():
            try:
                await self.poll_once(client)
            except (httpx.HTTPError, InvalidInput, KeyError, ValueError) as e:
                logger.warning(f"Poll failed: {e}")
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def listen_stream(self, client: httpx.AsyncClient) -> None:
        """Consume /events until stopped; reconnect after a fixed delay on any failure."""
        while not self._stopped.is_set():
            try:
                async with client.stream("GET", "/events", timeout=None) as response:
                    if response.status_code != 200:
                        logger.warning(f"⚠️  Stream returned HTTP {response.status_code}")
                    else:
                        async for line in response.aiter_lines():
                            message = parse_sse_line(line)
                            if message is not None:
                                self.handle_message(message)
                            if self._stopped.is_set():
                                return
            except httpx.HTTPError as e:
                logger.warning(f"❌ Stream dropped: {e}")

            self.state.mark_disconnected()
            logger.info(f"Reconnecting stream in {self.reconnect_delay}s")
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.reconnect_delay)
            except asyncio.TimeoutError:
                pass

    async def listen_relay(self) -> None:
        listener = RelayListener(on_message=self.handle_message,
                                 loop=asyncio.get_running_loop(), **self.relay)
        listener.start()
        try:
            await self._stopped.wait()
        finally:
            listener.stop()

    async def run(self) -> None:
        """Poll and listen concurrently until stop() is called."""
        async with httpx.AsyncClient(base_url=self.base_url, headers=self.headers,
                                     timeout=10) as client:
            live = self.listen_relay() if self.relay else self.listen_stream(client)
            await asyncio.gather(self.poll_forever(client), live)
