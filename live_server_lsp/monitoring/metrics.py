import time
import threading
from typing import Dict, Any, List
from dataclasses import dataclass, field

@dataclass
class ErrorRecord:
    name: str
    message: str
    timestamp: float = field(default_factory=time.time)

class MetricsTracker:
    """In-process counters for the registry, heartbeat and workspaces"""

    max_errors = 50

    def __init__(self):
        self.metrics: Dict[str, float] = {
            'registry.registered': 0,
            'registry.declined': 0,
            'heartbeat.cycles': 0,
            'heartbeat.evicted': 0,
            'broadcast.published': 0,
            'workspace.signals': 0,
        }
        self.errors: List[ErrorRecord] = []
        self._lock = threading.Lock()

    def increment(self, name: str, amount: float = 1):
        """Increment a counter"""
        with self._lock:
            self.metrics[name] = self.metrics.get(name, 0) + amount

    def record(self, name: str, value: float):
        """Record the latest value of a gauge"""
        with self._lock:
            self.metrics[name] = value

    def record_error(self, name: str, message: str):
        """Record an error, keeping only the most recent ones"""
        with self._lock:
            self.errors.append(ErrorRecord(name=name, message=message))
            if len(self.errors) > self.max_errors:
                self.errors.pop(0)

    def time(self) -> float:
        return time.monotonic()

    def get_all_metrics(self) -> Dict[str, Any]:
        """Snapshot of every counter and the recent errors"""
        with self._lock:
            return {
                'counters': dict(self.metrics),
                'errors': [
                    {'name': e.name, 'message': e.message, 'timestamp': e.timestamp}
                    for e in self.errors
                ]
            }
