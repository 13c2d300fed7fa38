"""
Tests for the decision router.
"""
import time

import pytest

from hybrid_brain.brain import LocalBrain
from hybrid_brain.config import BrainConfig
from hybrid_brain.memory import WorldMemory
from hybrid_brain.router import REMOTE_WORKERS, DecisionRouter
from hybrid_brain.strategist import NullStrategist
from hybrid_brain.types import DecisionRequest, DecisionSource, Position, Priority

from conftest import FailingStrategist, ScriptedStrategist, SlowStrategist


@pytest.fixture
def make_router(clock):
    routers = []

    def factory(strategist=None, **config_kwargs):
        config = BrainConfig(**config_kwargs)
        router = DecisionRouter(
            LocalBrain(WorldMemory(clock=clock)),
            strategist,
            config,
            clock=clock,
        )
        routers.append(router)
        return router

    yield factory
    for router in routers:
        router.close()


class BrokenBrain(LocalBrain):
    def decide(self, snapshot):
        raise RuntimeError("brain exploded")

    def dominant_need_confidence(self, snapshot):
        raise RuntimeError("brain exploded")


class TestRouting:
    """Source selection."""

    def test_offline_uses_brain(self, make_router):
        router = make_router(NullStrategist())
        result = router.decide(DecisionRequest(type="strategic", complexity=0.9))

        assert result.source == DecisionSource.BRAIN
        assert router.budget.used == 0

    def test_reactive_never_calls_remote(self, make_router):
        strategist = ScriptedStrategist()
        router = make_router(strategist)

        for urgency in (0.2, 0.9):
            result = router.decide(DecisionRequest(type="reactive", complexity=0.9, urgency=urgency))
            assert result.source in (DecisionSource.BRAIN, DecisionSource.CACHE)

        assert result.source == DecisionSource.BRAIN
        assert strategist.calls == 0

    def test_urgent_tactical_never_calls_remote(self, make_router):
        strategist = ScriptedStrategist()
        router = make_router(strategist)

        result = router.decide(DecisionRequest(type="tactical", complexity=0.5, urgency=0.9))

        assert result.source == DecisionSource.BRAIN
        assert strategist.calls == 0

    def test_complex_strategic_uses_remote(self, make_router):
        strategist = ScriptedStrategist(action="build_shelter", priority="high")
        router = make_router(strategist)

        result = router.decide(DecisionRequest(type="strategic", complexity=0.9, urgency=0.1))

        assert result.source == DecisionSource.AI
        assert result.action == "build_shelter"
        assert result.priority == Priority.HIGH
        assert result.confidence == pytest.approx(0.8)
        assert router.budget.used == 1

    def test_low_brain_confidence_goes_hybrid(self, make_router):
        strategist = ScriptedStrategist(action="mine_stone", priority="high")
        router = make_router(strategist)

        # Fresh memory: diamonds needed, no known location -> brain confidence 0.2
        result = router.decide(DecisionRequest(type="tactical", complexity=0.4))

        assert result.source == DecisionSource.HYBRID
        assert result.action == "mine_stone"
        assert result.insights["winner"] == "remote"
        assert result.confidence == pytest.approx(0.8)
        assert router.budget.used == 1

    def test_confident_brain_stays_local(self, make_router):
        strategist = ScriptedStrategist()
        router = make_router(strategist)
        for i in range(10):
            router.brain.memory.remember_resource("diamond", Position(i * 4.0, 12.0, 0.0), 1)

        result = router.decide(DecisionRequest(type="tactical", complexity=0.4))

        assert result.source == DecisionSource.BRAIN
        assert result.action == "gather_diamond"
        assert strategist.calls == 0


class TestFallback:
    """Remote failures never escape decide()."""

    def test_strategic_failure_falls_back_to_brain(self, make_router):
        router = make_router(FailingStrategist())

        result = router.decide(DecisionRequest(type="strategic", complexity=0.9, urgency=0.1))

        assert result.source == DecisionSource.BRAIN
        assert router.budget.used == 1
        assert router.metrics()["remote_failures"] == 1

    def test_hybrid_failure_returns_brain_result(self, make_router):
        router = make_router(FailingStrategist())

        result = router.decide(DecisionRequest(type="tactical", complexity=0.4))

        assert result.source == DecisionSource.BRAIN
        assert result.action == "explore"
        assert "winner" not in result.insights

    def test_remote_timeout_falls_back(self, make_router):
        strategist = SlowStrategist()
        router = make_router(strategist, remote_timeout=0.1)
        try:
            result = router.decide(DecisionRequest(type="strategic", complexity=0.9))
        finally:
            strategist.release.set()

        assert result.source == DecisionSource.BRAIN
        assert router.metrics_collector.get_counter("remote_failures") == 1

    def test_busy_workers_skip_remote_without_waiting(self, make_router):
        strategist = SlowStrategist()
        router = make_router(strategist, remote_timeout=0.2)
        requests = [DecisionRequest(type="strategic", complexity=0.9, urgency=i / 10) for i in range(6)]
        try:
            for request in requests[:REMOTE_WORKERS]:
                assert router.decide(request).source == DecisionSource.BRAIN
            assert router.remote_in_flight == REMOTE_WORKERS

            start = time.perf_counter()
            result = router.decide(requests[4])
            elapsed = time.perf_counter() - start

            assert result.source == DecisionSource.BRAIN
            assert elapsed < 0.1
            assert strategist.calls == REMOTE_WORKERS
            assert router.budget.used == REMOTE_WORKERS
        finally:
            strategist.release.set()

        deadline = time.monotonic() + 5
        while router.remote_in_flight and time.monotonic() < deadline:
            time.sleep(0.01)

        assert router.remote_in_flight == 0
        assert router.decide(requests[5]).source == DecisionSource.AI

    def test_many_failures_always_produce_results(self, make_router):
        router = make_router(FailingStrategist(), remote_calls_per_hour=1000, decision_cache_ttl=0)

        for i in range(50):
            request = DecisionRequest(type="strategic", complexity=0.75 + (i % 3) * 0.1, urgency=(i % 8) / 10)
            result = router.decide(request)
            assert result.action
            assert 0.0 <= result.confidence <= 1.0

    def test_brain_failure_uses_safe_default(self, clock):
        router = DecisionRouter(BrokenBrain(WorldMemory(clock=clock)), clock=clock)
        try:
            result = router.decide(DecisionRequest(type="tactical", complexity=0.3))
        finally:
            router.close()

        assert result.action == "explore"
        assert result.priority == Priority.LOW
        assert result.confidence == 0.5
        assert result.source == DecisionSource.BRAIN


class TestBudget:
    """Hourly remote-call cap."""

    def test_cap_is_never_exceeded(self, make_router):
        strategist = ScriptedStrategist()
        router = make_router(strategist, remote_calls_per_hour=3)

        sources = [
            router.decide(DecisionRequest(type="strategic", complexity=0.9, urgency=i / 10)).source
            for i in range(5)
        ]

        assert strategist.calls == 3
        assert sources.count(DecisionSource.AI) == 3
        assert sources[3:] == [DecisionSource.BRAIN, DecisionSource.BRAIN]
        assert router.budget.remaining == 0

    def test_budget_resets_next_hour(self, make_router, clock):
        strategist = ScriptedStrategist()
        router = make_router(strategist, remote_calls_per_hour=1, decision_cache_ttl=0)

        router.decide(DecisionRequest(type="strategic", complexity=0.9))
        assert router.budget.remaining == 0

        clock.advance(3600)
        result = router.decide(DecisionRequest(type="strategic", complexity=0.9))

        assert result.source == DecisionSource.AI
        assert strategist.calls == 2


class TestCache:
    """Five-minute decision cache."""

    def test_repeat_request_hits_cache(self, make_router):
        router = make_router(NullStrategist())
        request = DecisionRequest(type="tactical", complexity=0.42, urgency=0.1)

        first = router.decide(request)
        second = router.decide(DecisionRequest(type="tactical", complexity=0.47, urgency=0.15))

        assert second.source == DecisionSource.CACHE
        assert second.content() == first.content()
        assert first.source == DecisionSource.BRAIN

    def test_cache_hit_does_not_spend_budget(self, make_router):
        strategist = ScriptedStrategist()
        router = make_router(strategist)
        request = DecisionRequest(type="strategic", complexity=0.9)

        router.decide(request)
        router.decide(request)

        assert strategist.calls == 1
        assert router.budget.used == 1

    def test_cache_expires(self, make_router, clock):
        router = make_router(NullStrategist())
        request = DecisionRequest(type="tactical", complexity=0.3)

        router.decide(request)
        clock.advance(301)

        assert router.decide(request).source == DecisionSource.BRAIN

    def test_different_buckets_miss(self, make_router):
        router = make_router(NullStrategist())

        router.decide(DecisionRequest(type="tactical", complexity=0.3))
        result = router.decide(DecisionRequest(type="tactical", complexity=0.5))

        assert result.source == DecisionSource.BRAIN


class TestPlanning:

    def test_offline_plan_one_step_per_objective(self, make_router):
        router = make_router(NullStrategist())

        plan = router.strategic_plan([
            {"name": "build_base", "priority": "high", "resources": ["wood", "stone"]},
            {"name": "find_diamonds"},
        ])

        assert [step["action"] for step in plan] == ["build_base", "find_diamonds"]
        assert plan[0]["resources_needed"] == ["wood", "stone"]
        assert plan[1]["priority"] == "medium"
        assert plan[1]["estimated_time"] == "5 minutes"

    def test_failed_remote_plan_falls_back(self, make_router):
        router = make_router(FailingStrategist())

        plan = router.strategic_plan([{"name": "build_base"}])

        assert plan[0]["action"] == "build_base"
        assert router.budget.used == 1


class TestMetrics:

    def test_counts_by_source(self, make_router):
        router = make_router(NullStrategist())

        router.decide(DecisionRequest(type="reactive"))
        router.decide(DecisionRequest(type="reactive"))
        router.decide(DecisionRequest(type="tactical", complexity=0.5))

        m = router.metrics()
        assert m["total_decisions"] == 3
        assert m["brain_decisions"] == 2
        assert m["cache_hits"] == 1
        assert m["efficiency"] == 100.0
        assert m["remote_call_cap"] == 100

    def test_performance_report_text(self, make_router):
        router = make_router(NullStrategist())
        router.decide(DecisionRequest(type="reactive"))

        report = router.performance_report()

        assert "Brain Decisions: 1" in report
        assert "Remote Calls Remaining: 100/100" in report
