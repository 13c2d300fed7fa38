"""
Tests for core data types.
"""
import pytest

from hybrid_brain.types import (
    DecisionRequest,
    DecisionResult,
    DecisionSource,
    DecisionType,
    GameSnapshot,
    Position,
    Priority,
    clamp,
)


class TestPosition:

    def test_from_any(self):
        assert Position.from_any({"x": 1, "z": 3}) == Position(1.0, 0.0, 3.0)
        assert Position.from_any([1, 2, 3]) == Position(1.0, 2.0, 3.0)
        assert Position.from_any(None) is None

    def test_chunk_key(self):
        assert Position(17, 0, -1).chunk_key() == "1,-1"
        assert Position(17, 0, -1).chunk_key(32) == "0,-1"

    def test_distance(self):
        assert Position(0, 0, 0).distance_to(Position(3, 4, 0)) == 5.0


class TestGameSnapshot:

    def test_from_dict_ignores_unknown_keys(self):
        snap = GameSnapshot.from_dict({
            "health": 0.4,
            "position": [1, 2, 3],
            "resources": {"wood": 5},
            "weather": "rain",
        })
        assert snap.health == 0.4
        assert snap.position == Position(1.0, 2.0, 3.0)
        assert snap.resource_count("wood") == 5
        assert snap.resource_count("iron") == 0

    def test_night(self):
        assert GameSnapshot(time_of_day=18000).is_night
        assert not GameSnapshot(time_of_day=6000).is_night
        assert GameSnapshot(time_of_day=12000).time_fraction == 0.5

    def test_to_dict_position_is_plain(self):
        assert GameSnapshot().to_dict()["position"] == {"x": 0.0, "y": 64.0, "z": 0.0}


class TestDecisionRequest:

    def test_clamps_and_converts(self):
        request = DecisionRequest(type="strategic", complexity=1.7, urgency=-1, snapshot={"health": 0.5})

        assert request.type == DecisionType.STRATEGIC
        assert request.complexity == 1.0
        assert request.urgency == 0.0
        assert request.snapshot.health == 0.5

    def test_invalid_type(self):
        with pytest.raises(ValueError):
            DecisionRequest(type="panicky")

    def test_cache_key_buckets(self):
        a = DecisionRequest(type="tactical", complexity=0.41, urgency=0.55)
        b = DecisionRequest(type="tactical", complexity=0.49, urgency=0.51)
        c = DecisionRequest(type="tactical", complexity=1.0, urgency=1.0)

        assert a.cache_key() == b.cache_key() == "tactical|4|5"
        assert c.cache_key() == "tactical|9|9"


class TestDecisionResult:

    def test_confidence_clamped(self):
        assert DecisionResult(action="explore", confidence=1.4).confidence == 1.0
        assert DecisionResult(action="explore", confidence=-0.2).confidence == 0.0

    def test_to_dict(self):
        result = DecisionResult(action="eat", priority="critical", source="ai", confidence=0.9)
        data = result.to_dict()

        assert data["priority"] == "critical"
        assert data["source"] == "ai"
        assert result.priority == Priority.CRITICAL
        assert result.source == DecisionSource.AI
        assert "source" not in result.content()


def test_clamp():
    assert clamp(2.0) == 1.0
    assert clamp(-2.0) == 0.0
    assert clamp(5.0, 0.0, 10.0) == 5.0
