import threading
import time

COUNTERS = (
    'connections_accepted',
    'handshake_failures',
    'sessions_closed',
    'messages_relayed',
    'lines_delivered',
    'write_failures',
)


class RelayStats:
    """Process-wide relay counters, safe to bump from any thread"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts = {name: 0 for name in COUNTERS}
        self.started_at = time.time()

    def incr(self, counter: str, amount: int = 1) -> None:
        if counter not in self._counts:
            raise KeyError(f"unknown counter {counter!r}")
        with self._lock:
            self._counts[counter] += amount

    def get(self, counter: str) -> int:
        with self._lock:
            return self._counts[counter]

    def snapshot(self) -> dict:
        with self._lock:
            summary = dict(self._counts)
        summary['uptime_sec'] = round(time.time() - self.started_at, 3)
        return summary
