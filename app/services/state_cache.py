# app/services/state_cache.py
"""
Last-known counter state.
Holds exactly one CounterReading, replaced wholesale on every accepted
ingestion. Owned by the FastAPI app (app.state.cache) and injected into
handlers via get_state_cache().
"""

import threading
from typing import Optional
from fastapi import Request
from app.services.reading_parser import CounterReading


class StateCache:
    def __init__(self, initial: Optional[CounterReading] = None):
        self._lock = threading.Lock()
        self._reading = initial or CounterReading.initial()

    def get(self) -> CounterReading:
        with self._lock:
            return self._reading

    def replace(self, reading: CounterReading) -> None:
        """Swap in a new reading. Never merges with the previous one."""
        with self._lock:
            self._reading = reading


def get_state_cache(request: Request) -> StateCache:
    """FastAPI dependency — the process-wide cache owned by the app."""
    return request.app.state.cache
