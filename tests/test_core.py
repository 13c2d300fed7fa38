"""
End-to-end tests for the wired HybridBrain.
"""
import os

import pytest

from hybrid_brain import HybridBrain
from hybrid_brain.inference import ACTION_NETWORK
from hybrid_brain.types import DecisionRequest, DecisionSource, Position


@pytest.fixture
def make_brain(clock):
    brains = []

    def factory(config, **kwargs):
        brain = HybridBrain(config, clock=clock, **kwargs)
        brains.append(brain)
        return brain

    yield factory
    for brain in brains:
        brain.router.close()


class TestDecisions:

    def test_decide_from_mapping(self, make_brain, config):
        brain = make_brain(config)

        result = brain.decide({"type": "tactical", "complexity": 0.4, "snapshot": {"health": 0.8}})

        assert result.action == "explore"
        assert result.source == DecisionSource.BRAIN
        assert len(brain.learner.buffer.pending("explore")) == 1

    def test_known_resource_is_gathered(self, make_brain, config):
        brain = make_brain(config)
        for i in range(10):
            brain.report_resource("diamond", 1, (i * 3, 12, 0))

        result = brain.decide(DecisionRequest(type="reactive"))

        assert result.action == "gather_diamond"

    def test_plan(self, make_brain, config):
        brain = make_brain(config)

        plan = brain.strategic_plan([{"name": "build_base", "priority": "high"}])

        assert plan == [{
            "action": "build_base",
            "priority": "high",
            "resources_needed": [],
            "estimated_time": "5 minutes",
        }]

    def test_instances_share_no_state(self, make_brain, config, offline_config):
        first = make_brain(config)
        second = make_brain(offline_config)

        first.report_resource("iron", 2, (1, 12, 1))
        first.decide(DecisionRequest(type="reactive"))

        assert second.memory.find_nearest("iron") is None
        assert len(second.learner.buffer) == 0
        assert second.router.metrics()["total_decisions"] == 0


class TestLearningLoop:

    def test_outcomes_train_the_action_model(self, make_brain, config):
        config.min_training_samples = 3
        brain = make_brain(config)

        for urgency in (0.0, 0.3, 0.6):
            result = brain.decide(DecisionRequest(type="tactical", complexity=0.4, urgency=urgency))
            brain.report_outcome(result.action, success=True, reward=2.0)

        report = brain.train_now()

        assert report is not None
        assert report.samples == 3
        assert brain.memory.confidence_record("explore").attempts == 3

    def test_train_now_skips_without_data(self, make_brain, config):
        assert make_brain(config).train_now() is None

    def test_queries_see_queued_events(self, make_brain, config):
        brain = make_brain(config)
        for i in range(12):
            brain.report_resource("wood", 4, (i, 64, 0))
        for _ in range(3):
            brain.report_combat("zombie", "kiting", "win")
        brain.report_path((0, 64, 0), (100, 64, 0), 5000, 100, True)

        forecast = brain.forecast("wood")
        strategy = brain.best_strategy("zombie")
        route = brain.optimal_route((0, 64, 0), (100, 64, 0))

        assert forecast["history_samples"] == 12
        assert forecast["optimal_locations"][0]["observations"] == 12
        assert strategy["strategy"] == "kiting"
        assert strategy["spawn_locations"] == []
        assert route["reason"] == "insufficient_data"


class TestLifecycle:

    def test_state_survives_restart(self, make_brain, config):
        brain = make_brain(config)
        brain.report_resource("iron", 3, (10, 12, 10))
        brain.report_danger((0, 64, 0), "lava", 0.9)
        for _ in range(3):
            brain.report_combat("skeleton", "bow", "win")
        brain.decide(DecisionRequest(type="tactical", complexity=0.2))
        brain.stop()

        assert os.path.exists(os.path.join(config.model_dir, ACTION_NETWORK.name, "weights.bin"))

        restored = make_brain(config)
        restored.load()

        assert restored.memory.find_nearest("iron").quantity == 3
        assert restored.memory.danger_at(Position(0, 64, 0)).danger_type == "lava"
        assert restored.best_strategy("skeleton")["strategy"] == "bow"
        assert len(restored.learner.buffer.pending()) == 1

    def test_context_manager_runs_learner(self, config):
        with HybridBrain(config) as brain:
            assert brain.learner.running
            brain.report_outcome("explore", success=True)

        assert not brain.learner.running
        assert brain.memory.confidence_record("explore").attempts == 1

    def test_start_is_idempotent(self, config):
        brain = HybridBrain(config)
        brain.start()
        thread = brain.learner._thread
        try:
            brain.start()
            assert brain.learner._thread is thread
        finally:
            brain.stop()


class TestReporting:

    def test_metrics_sections(self, make_brain, config):
        brain = make_brain(config)
        brain.decide(DecisionRequest(type="reactive"))

        metrics = brain.metrics()

        assert set(metrics) == {"router", "inference", "learner", "memory", "persistence"}
        assert metrics["router"]["total_decisions"] == 1
        assert metrics["learner"]["experiences"] == 1

    def test_performance_report(self, make_brain, config):
        report = make_brain(config).performance_report()

        assert "Learning Report:" in report
        assert "Last Loss: n/a" in report
        assert "Most Needed: diamond" in report
