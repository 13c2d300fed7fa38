"""
Tests for world memory and the confidence model.
"""
import pytest

from hybrid_brain.memory import ActionCandidate, WorldMemory
from hybrid_brain.types import GameSnapshot, Position


@pytest.fixture
def memory(clock):
    return WorldMemory(clock=clock)


class TestResources:

    def test_find_nearest(self, memory):
        memory.remember_resource("iron", Position(100, 12, 0), 2)
        memory.remember_resource("iron", Position(10, 12, 0), 5)

        nearest = memory.find_nearest("iron", origin=Position(0, 12, 0))

        assert nearest.quantity == 5
        assert nearest.position == Position(10, 12, 0)

    def test_unknown_resource(self, memory):
        assert memory.find_nearest("gold") is None

    def test_expired_locations_ignored(self, memory, clock):
        memory.remember_resource("wood", Position(5, 64, 5))
        clock.advance(601)

        assert memory.find_nearest("wood") is None
        assert memory.find_nearest("wood", max_age=1000) is not None

    def test_bounded_per_type(self, memory):
        for i in range(60):
            memory.remember_resource("stone", Position(i, 64, 0))

        assert memory.known_locations("stone") == 50
        # Oldest dropped
        nearest = memory.find_nearest("stone", origin=Position(0, 64, 0))
        assert nearest.position.x == 10


class TestDanger:

    def test_mark_and_query_same_chunk(self, memory):
        memory.mark_danger(Position(3, 64, 3), "lava", 0.8)

        zone = memory.danger_at(Position(15, 70, 15))

        assert zone is not None
        assert zone.danger_type == "lava"
        assert memory.danger_at(Position(17, 64, 3)) is None

    def test_mark_overwrites(self, memory):
        memory.mark_danger(Position(1, 64, 1), "lava", 0.8)
        memory.mark_danger(Position(2, 64, 2), "creeper", 0.3)

        assert memory.danger_at(Position(1, 64, 1)).danger_type == "creeper"
        assert memory.stats()["danger_zones"] == 1

    def test_danger_expires_lazily(self, memory, clock):
        memory.mark_danger(Position(0, 64, 0), "lava")
        clock.advance(601)

        assert memory.stats()["danger_zones"] == 1
        assert memory.danger_at(Position(0, 64, 0)) is None
        assert memory.stats()["danger_zones"] == 0

    def test_negative_coordinates_floor(self, memory):
        memory.mark_danger(Position(-1, 64, -1), "cliff")

        assert memory.danger_at(Position(-16, 64, -16)) is not None
        assert memory.danger_at(Position(0, 64, 0)) is None


class TestConfidence:

    def test_neutral_before_three_attempts(self, memory):
        memory.record_outcome("gather_wood", False, -5)
        memory.record_outcome("gather_wood", False, -5)

        assert memory.confidence("gather_wood") == 0.5
        assert memory.confidence("never_tried") == 0.5

    def test_confidence_formula(self, memory):
        for _ in range(3):
            memory.record_outcome("gather_wood", True, 10.0)
        memory.record_outcome("gather_wood", False, 0.0)

        # success_rate 0.75, avg_reward 7.5 -> 0.7 * 0.75 + 0.3 * 0.75
        assert memory.confidence("gather_wood") == pytest.approx(0.75)

    def test_reward_factor_capped(self, memory):
        for _ in range(3):
            memory.record_outcome("mine_diamond", True, 1000.0)

        assert memory.confidence("mine_diamond") == pytest.approx(1.0)

    def test_confidence_in_unit_interval(self, memory):
        for _ in range(5):
            memory.record_outcome("fight", False, -1000.0)

        assert 0.0 <= memory.confidence("fight") <= 1.0

    def test_confidence_for_unknown_resource(self, memory):
        # No locations (-0.2), stock at 0 of target (-0.1)
        assert memory.confidence_for_resource("diamond") == pytest.approx(0.2)
        assert memory.confidence_for_resource(None) == 0.5

    def test_confidence_for_well_known_resource(self, memory):
        for i in range(10):
            memory.remember_resource("wood", Position(i, 64, 0))
        memory.resource_needs["wood"].current = 200

        assert memory.confidence_for_resource("wood") == pytest.approx(1.0)


class TestRisk:

    def test_safe_by_default(self, memory):
        assert memory.assess_risk("gather") == 0.0

    def test_danger_zone_and_distance(self, memory):
        memory.mark_danger(Position(300, 64, 0), "lava", 1.0)

        risk = memory.assess_risk("gather", Position(300, 64, 0))

        # 0.5 from the zone, distance 300 / 500 capped at 0.3
        assert risk == pytest.approx(0.8)

    def test_low_health_and_night_exploring(self, memory):
        memory.observe(GameSnapshot(health=0.2, time_of_day=15000))

        assert memory.assess_risk("explore") == pytest.approx(0.44)
        assert memory.assess_risk("gather") == pytest.approx(0.24)

    def test_risk_clamped(self, memory):
        memory.observe(GameSnapshot(health=0.0, time_of_day=15000))
        memory.mark_danger(Position(1000, 64, 0), "lava", 1.0)

        assert memory.assess_risk("explore", Position(1000, 64, 0)) == 1.0


class TestNeeds:

    def test_most_needed_initially_diamond(self, memory):
        resource, priority = memory.most_needed_resource()

        assert resource == "diamond"
        assert priority == pytest.approx(1.0)

    def test_observe_updates_stock(self, memory):
        memory.observe(GameSnapshot(resources={"diamond": 3, "food": 16}))

        priorities = memory.resource_priorities()
        assert priorities["diamond"] == 0.0
        assert priorities["food"] == pytest.approx(0.5 * 0.95)
        assert memory.most_needed_resource()[0] == "iron"

    def test_nothing_needed(self, memory):
        memory.observe(GameSnapshot(resources={
            "wood": 64, "stone": 128, "iron": 32, "diamond": 3, "food": 32, "coal": 64,
        }))

        assert memory.most_needed_resource() == (None, 0.0)


class TestOptimize:

    def test_empty(self, memory):
        assert memory.optimize_decision([]) is None

    def test_prefers_confident_safe_candidate(self, memory):
        for _ in range(4):
            memory.record_outcome("gather_wood", True, 10.0)
        memory.mark_danger(Position(20, 64, 0), "lava", 1.0)

        best = memory.optimize_decision([
            ActionCandidate("gather_wood", "gather", expected_reward=1.0),
            ActionCandidate("mine_iron", "mine", expected_reward=1.0, target=Position(20, 64, 0)),
        ])

        assert best.name == "gather_wood"
        assert best.score == pytest.approx(1.0)


class TestSnapshot:

    def test_round_trip(self, memory, clock):
        memory.remember_resource("iron", Position(1, 2, 3), 4)
        memory.mark_danger(Position(0, 64, 0), "lava", 0.5)
        for _ in range(3):
            memory.record_outcome("gather_iron", True, 5.0)

        restored = WorldMemory.from_dict(memory.to_dict(), clock=clock)

        assert restored.find_nearest("iron").quantity == 4
        assert restored.danger_at(Position(0, 64, 0)).severity == 0.5
        assert restored.confidence("gather_iron") == memory.confidence("gather_iron")

    def test_report_mentions_need(self, memory):
        assert "Most Needed: diamond" in memory.report()
