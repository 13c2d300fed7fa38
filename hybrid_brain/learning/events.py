"""
Bounded hand-off between reporters and the learner thread.

Any thread may ``put``; the learner ``drain``s and applies events in
arrival order. When full, either the oldest queued event or the incoming
one is discarded, and the discard is logged and passed to ``on_drop``.
"""
from __future__ import annotations

import itertools
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_SIZE = 1000


class EventKind(str, Enum):
    OUTCOME = "outcome"
    RESOURCE = "resource"
    COMBAT = "combat"
    PATH = "path"


class DropPolicy(str, Enum):
    OLDEST = "oldest"
    NEWEST = "newest"


@dataclass
class LearnerEvent:
    kind: EventKind
    payload: Dict[str, Any]
    sequence: int = 0
    received_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "payload": dict(self.payload),
            "received_at": self.received_at,
            "sequence": self.sequence,
        }


class EventChannel:
    """
    Thread-safe FIFO holding at most ``maxsize`` events.

    >>> channel = EventChannel(maxsize=2)
    >>> channel.put(EventKind.OUTCOME, {"action": "mine", "success": True})
    True
    >>> [e.payload["action"] for e in channel.drain()]
    ['mine']
    """

    def __init__(
        self,
        maxsize: int = DEFAULT_CHANNEL_SIZE,
        drop_policy: DropPolicy = DropPolicy.OLDEST,
        on_drop: Optional[Callable[[LearnerEvent], None]] = None,
    ):
        self.maxsize = max(1, maxsize)
        self.drop_policy = DropPolicy(drop_policy)
        self.on_drop = on_drop

        self._items: Deque[LearnerEvent] = deque()
        self._cond = threading.Condition()
        self._seq = itertools.count(1)
        self._counts = {"put": 0, "get": 0, "drop": 0}

    def put(self, kind: EventKind, payload: Dict[str, Any]) -> bool:
        """Queue an event. False means the incoming event itself was discarded."""
        with self._cond:
            event = LearnerEvent(EventKind(kind), dict(payload), sequence=next(self._seq))
            self._counts["put"] += 1

            victim = None
            if len(self._items) >= self.maxsize:
                self._counts["drop"] += 1
                victim = event if self.drop_policy is DropPolicy.NEWEST else self._items.popleft()
            if victim is not event:
                self._items.append(event)
                self._cond.notify()

        if victim is not None:
            self._discarded(victim)
        return victim is not event

    def get(self, timeout: Optional[float] = None) -> Optional[LearnerEvent]:
        """Pop the oldest event, blocking up to ``timeout`` seconds."""
        with self._cond:
            if not self._cond.wait_for(lambda: self._items, timeout):
                return None
            self._counts["get"] += 1
            return self._items.popleft()

    def drain(self, max_items: Optional[int] = None) -> List[LearnerEvent]:
        with self._cond:
            n = len(self._items)
            if max_items is not None:
                n = min(n, max_items)
            taken = [self._items.popleft() for _ in range(n)]
            self._counts["get"] += n
        return taken

    def clear(self) -> int:
        with self._cond:
            n = len(self._items)
            self._items.clear()
        return n

    def size(self) -> int:
        with self._cond:
            return len(self._items)

    def stats(self) -> Dict[str, Any]:
        with self._cond:
            puts, drops = self._counts["put"], self._counts["drop"]
            return {
                "current_size": len(self._items),
                "maxsize": self.maxsize,
                "put_count": puts,
                "get_count": self._counts["get"],
                "drop_count": drops,
                "drop_rate": drops / puts if puts else 0.0,
            }

    def _discarded(self, event: LearnerEvent) -> None:
        logger.warning(
            f"Learner channel at capacity {self.maxsize}; "
            f"discarded {event.kind.value} event #{event.sequence} ({self.drop_policy.value})"
        )
        if self.on_drop is None:
            return
        try:
            self.on_drop(event)
        except Exception as e:
            logger.warning(f"on_drop callback raised: {e}")
