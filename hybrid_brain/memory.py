"""
World memory and confidence model.

Remembers where resources were found and where it was dangerous, and turns
sparse action outcomes into confidence and risk scalars for the router and
the learner.

Key invariants:
- Resource lists are bounded per type (oldest dropped)
- Danger zones are keyed by coarse grid cell and expire lazily
- Action confidence is neutral (0.5) until an action has 3 attempts
- Every confidence and risk output lies in [0, 1]
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from .types import GameSnapshot, Position, clamp

logger = logging.getLogger(__name__)

MAX_RESOURCE_LOCATIONS = 50
DEFAULT_RESOURCE_MAX_AGE = 600.0   # seconds
DANGER_ZONE_TTL = 600.0            # seconds
CHUNK_SIZE = 16
NEUTRAL_CONFIDENCE = 0.5
MIN_ATTEMPTS_FOR_CONFIDENCE = 3
REWARD_NORMALIZER = 10.0
LOCATION_SATURATION = 10
MAX_RISK_DISTANCE = 500.0


@dataclass
class ResourceLocation:
    """A remembered resource sighting."""
    resource_type: str
    position: Position
    quantity: int
    discovered_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_type": self.resource_type,
            "position": self.position.to_dict(),
            "quantity": self.quantity,
            "discovered_at": self.discovered_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceLocation":
        return cls(
            resource_type=data["resource_type"],
            position=Position.from_any(data["position"]),
            quantity=int(data.get("quantity", 1)),
            discovered_at=float(data["discovered_at"]),
        )


@dataclass
class DangerZone:
    """A remembered hazard, one per grid cell."""
    chunk_key: str
    danger_type: str
    severity: float
    discovered_at: float
    position: Optional[Position] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_key": self.chunk_key,
            "danger_type": self.danger_type,
            "severity": self.severity,
            "discovered_at": self.discovered_at,
            "position": self.position.to_dict() if self.position else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DangerZone":
        return cls(
            chunk_key=data["chunk_key"],
            danger_type=data["danger_type"],
            severity=float(data["severity"]),
            discovered_at=float(data["discovered_at"]),
            position=Position.from_any(data.get("position")),
        )


@dataclass
class ConfidenceRecord:
    """Running outcome tally for one action name."""
    action: str
    attempts: int = 0
    successes: int = 0
    total_reward: float = 0.0

    @property
    def success_rate(self) -> float:
        if self.attempts == 0:
            return NEUTRAL_CONFIDENCE
        return self.successes / self.attempts

    @property
    def avg_reward(self) -> float:
        if self.attempts == 0:
            return 0.0
        return self.total_reward / self.attempts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "attempts": self.attempts,
            "successes": self.successes,
            "total_reward": self.total_reward,
        }


@dataclass
class ResourceNeed:
    """Stock target for one resource."""
    current: int
    target_min: int
    priority: float


def default_resource_needs() -> Dict[str, ResourceNeed]:
    return {
        "wood": ResourceNeed(current=0, target_min=64, priority=0.8),
        "stone": ResourceNeed(current=0, target_min=128, priority=0.7),
        "iron": ResourceNeed(current=0, target_min=32, priority=0.9),
        "diamond": ResourceNeed(current=0, target_min=3, priority=1.0),
        "food": ResourceNeed(current=0, target_min=32, priority=0.95),
        "coal": ResourceNeed(current=0, target_min=64, priority=0.6),
    }


@dataclass
class ActionCandidate:
    """An option handed to optimize_decision()."""
    name: str
    action_type: str
    expected_reward: float = 1.0
    target: Optional[Position] = None
    confidence: float = 0.0
    risk: float = 0.0
    score: float = 0.0


class WorldMemory:
    """
    Knowledge base of resource locations, danger zones and action outcomes.

    All state is owned by the instance; nothing is module-global.

    Example:
        >>> memory = WorldMemory()
        >>> memory.remember_resource("iron", Position(10, 12, 4), 3)
        >>> memory.find_nearest("iron", origin=Position(0, 12, 0)).quantity
        3
    """

    def __init__(
        self,
        max_locations: int = MAX_RESOURCE_LOCATIONS,
        danger_ttl: float = DANGER_ZONE_TTL,
        chunk_size: int = CHUNK_SIZE,
        resource_needs: Optional[Dict[str, ResourceNeed]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.max_locations = max_locations
        self.danger_ttl = danger_ttl
        self.chunk_size = chunk_size
        self._clock = clock
        self._lock = threading.RLock()

        self._resources: Dict[str, Deque[ResourceLocation]] = {}
        self._dangers: Dict[str, DangerZone] = {}
        self._confidence: Dict[str, ConfidenceRecord] = {}
        self.resource_needs = resource_needs or default_resource_needs()

        # Last observed agent state
        self.position = Position(0.0, 64.0, 0.0)
        self.health = 1.0
        self.time_of_day = 0
        self.is_night = False

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def observe(self, snapshot: GameSnapshot) -> None:
        """Update the agent's position, vitals and stock from a snapshot."""
        with self._lock:
            self.position = snapshot.position
            self.health = clamp(snapshot.health)
            self.time_of_day = snapshot.time_of_day
            self.is_night = snapshot.is_night
            for resource, need in self.resource_needs.items():
                if resource in snapshot.resources:
                    need.current = snapshot.resource_count(resource)

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    def remember_resource(self, resource_type: str, position: Position, quantity: int = 1) -> None:
        """Remember a sighting. Keeps the newest max_locations per type."""
        with self._lock:
            locations = self._resources.get(resource_type)
            if locations is None:
                locations = self._resources[resource_type] = deque(maxlen=self.max_locations)
            locations.append(
                ResourceLocation(
                    resource_type=resource_type,
                    position=position,
                    quantity=int(quantity),
                    discovered_at=self._clock(),
                )
            )
        logger.debug(f"Remembered {resource_type} x{quantity} at {position.to_dict()}")

    def find_nearest(
        self,
        resource_type: str,
        max_age: float = DEFAULT_RESOURCE_MAX_AGE,
        origin: Optional[Position] = None,
    ) -> Optional[ResourceLocation]:
        """Closest non-expired sighting of resource_type, or None."""
        origin = origin or self.position
        now = self._clock()

        with self._lock:
            locations = list(self._resources.get(resource_type, ()))

        nearest: Optional[ResourceLocation] = None
        min_distance = float("inf")
        for loc in locations:
            if now - loc.discovered_at > max_age:
                continue
            distance = origin.distance_to(loc.position)
            if distance < min_distance:
                min_distance = distance
                nearest = loc
        return nearest

    def known_locations(self, resource_type: str) -> int:
        with self._lock:
            return len(self._resources.get(resource_type, ()))

    # ------------------------------------------------------------------
    # Danger
    # ------------------------------------------------------------------

    def mark_danger(self, position: Position, danger_type: str, severity: float = 1.0) -> None:
        """Mark the grid cell containing position as dangerous (overwrites)."""
        key = position.chunk_key(self.chunk_size)
        with self._lock:
            self._dangers[key] = DangerZone(
                chunk_key=key,
                danger_type=danger_type,
                severity=clamp(severity),
                discovered_at=self._clock(),
                position=position,
            )
        logger.info(f"Marked danger zone {danger_type} (severity {severity:.2f}) at chunk {key}")

    def danger_at(self, position: Position) -> Optional[DangerZone]:
        """Live danger zone for position's cell; expired entries are purged here."""
        key = position.chunk_key(self.chunk_size)
        with self._lock:
            zone = self._dangers.get(key)
            if zone is None:
                return None
            if self._clock() - zone.discovered_at > self.danger_ttl:
                del self._dangers[key]
                return None
            return zone

    # ------------------------------------------------------------------
    # Confidence
    # ------------------------------------------------------------------

    def record_outcome(self, action: str, success: bool, reward: float = 0.0) -> ConfidenceRecord:
        """Fold one outcome into the action's running tally."""
        with self._lock:
            record = self._confidence.get(action)
            if record is None:
                record = self._confidence[action] = ConfidenceRecord(action=action)
            record.attempts += 1
            if success:
                record.successes += 1
            record.total_reward += float(reward)
            return record

    def confidence(self, action: str) -> float:
        """
        Confidence in an action from its history.

        0.5 until 3 attempts, then 0.7 * success_rate + 0.3 * min(avg_reward / 10, 1).
        """
        with self._lock:
            record = self._confidence.get(action)
            if record is None or record.attempts < MIN_ATTEMPTS_FOR_CONFIDENCE:
                return NEUTRAL_CONFIDENCE
            reward_factor = min(record.avg_reward / REWARD_NORMALIZER, 1.0)
            return clamp(0.7 * record.success_rate + 0.3 * reward_factor)

    def confidence_record(self, action: str) -> Optional[ConfidenceRecord]:
        with self._lock:
            return self._confidence.get(action)

    def confidence_for_resource(self, resource_type: Optional[str]) -> float:
        """
        How sure we are we can go and get resource_type.

        Blends known locations (0.4 weight, saturating at 10), the gather
        action's confidence (0.4 weight) and a +/-0.1 stock adjustment.
        """
        if not resource_type:
            return NEUTRAL_CONFIDENCE

        confidence = NEUTRAL_CONFIDENCE

        known = self.known_locations(resource_type)
        if known > 0:
            confidence += min(known / LOCATION_SATURATION, 1.0) * 0.4
        else:
            confidence -= 0.2

        action_confidence = self.confidence(f"gather_{resource_type}")
        record = self.confidence_record(f"gather_{resource_type}")
        if record is not None and record.attempts >= MIN_ATTEMPTS_FOR_CONFIDENCE:
            confidence += (action_confidence - NEUTRAL_CONFIDENCE) * 0.4

        need = self.resource_needs.get(resource_type)
        if need is not None and need.target_min > 0:
            need_ratio = need.current / need.target_min
            if need_ratio < 0.5:
                confidence -= 0.1
            elif need_ratio > 1.5:
                confidence += 0.1

        return clamp(confidence)

    # ------------------------------------------------------------------
    # Risk
    # ------------------------------------------------------------------

    def assess_risk(self, action_type: str, target: Optional[Position] = None) -> float:
        """Danger of doing action_type at target, in [0, 1]."""
        risk = 0.0

        if target is not None:
            zone = self.danger_at(target)
            if zone is not None:
                risk += zone.severity * 0.5
            risk += min(self.position.distance_to(target) / MAX_RISK_DISTANCE, 0.3)

        if self.health < 0.5:
            risk += min((1.0 - self.health) * 0.3, 0.3)

        if self.is_night and action_type == "explore":
            risk += 0.2

        return clamp(risk)

    # ------------------------------------------------------------------
    # Needs
    # ------------------------------------------------------------------

    def resource_priorities(self) -> Dict[str, float]:
        """Shortage ratio times base priority, per resource."""
        priorities = {}
        for resource, need in self.resource_needs.items():
            if need.target_min <= 0:
                priorities[resource] = 0.0
                continue
            shortage = max(0, need.target_min - need.current)
            priorities[resource] = (shortage / need.target_min) * need.priority
        return priorities

    def most_needed_resource(self) -> Tuple[Optional[str], float]:
        """(resource, priority) with the highest priority, or (None, 0.0)."""
        best: Optional[str] = None
        best_priority = 0.0
        for resource, priority in self.resource_priorities().items():
            if priority > best_priority:
                best, best_priority = resource, priority
        return best, best_priority

    def optimize_decision(self, candidates: List[ActionCandidate]) -> Optional[ActionCandidate]:
        """Pick the candidate maximizing confidence * expected_reward - 0.5 * risk."""
        if not candidates:
            return None
        for candidate in candidates:
            candidate.confidence = self.confidence(candidate.name)
            candidate.risk = self.assess_risk(candidate.action_type, candidate.target)
            candidate.score = candidate.confidence * candidate.expected_reward - candidate.risk * 0.5
        return max(candidates, key=lambda c: c.score)

    # ------------------------------------------------------------------
    # Reporting / persistence
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "known_resource_locations": sum(len(v) for v in self._resources.values()),
                "resource_types": len(self._resources),
                "danger_zones": len(self._dangers),
                "actions_tracked": len(self._confidence),
                "outcomes_recorded": sum(r.attempts for r in self._confidence.values()),
            }

    def report(self) -> str:
        stats = self.stats()
        resource, priority = self.most_needed_resource()
        return "\n".join([
            "Memory Report:",
            f"Known Locations: {stats['known_resource_locations']}",
            f"Danger Zones: {stats['danger_zones']}",
            f"Actions Learned: {stats['actions_tracked']}",
            f"Most Needed: {resource or 'None'} (priority {priority:.2f})",
        ])

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "resources": {
                    rtype: [loc.to_dict() for loc in locs]
                    for rtype, locs in self._resources.items()
                },
                "dangers": [zone.to_dict() for zone in self._dangers.values()],
                "confidence": [rec.to_dict() for rec in self._confidence.values()],
                "resource_needs": {
                    name: {"current": n.current, "target_min": n.target_min, "priority": n.priority}
                    for name, n in self.resource_needs.items()
                },
            }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], **kwargs) -> "WorldMemory":
        memory = cls(**kwargs)
        memory.load_dict(data)
        return memory

    def load_dict(self, data: Dict[str, Any]) -> None:
        """Replace state with a snapshot produced by to_dict()."""
        with self._lock:
            self._resources = {}
            for rtype, locs in data.get("resources", {}).items():
                bounded: Deque[ResourceLocation] = deque(maxlen=self.max_locations)
                bounded.extend(ResourceLocation.from_dict(loc) for loc in locs)
                self._resources[rtype] = bounded
            self._dangers = {
                zone.chunk_key: zone
                for zone in (DangerZone.from_dict(z) for z in data.get("dangers", []))
            }
            self._confidence = {
                rec["action"]: ConfidenceRecord(**rec) for rec in data.get("confidence", [])
            }
            for name, need in data.get("resource_needs", {}).items():
                self.resource_needs[name] = ResourceNeed(**need)
