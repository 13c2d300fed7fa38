"""
Tests for the scoring networks, feature extraction and the inference engine.
"""
import json
import os

import numpy as np
import pytest
import torch

from hybrid_brain.config import BrainConfig
from hybrid_brain.errors import ModelLoadFailure, TrainingFailure
from hybrid_brain.inference import (
    ACTION_FEATURES,
    ACTION_NETWORK,
    ACTION_TYPES,
    RESOURCE_FEATURES,
    RESOURCE_NETWORK,
    RISK_FEATURES,
    RISK_NETWORK,
    FeedForwardNetwork,
    InferenceEngine,
    action_features,
    action_type_index,
    resource_features,
    risk_features,
    risk_level,
)
from hybrid_brain.inference.features import describe
from hybrid_brain.types import GameSnapshot


class TestFeatures:

    def test_widths_match_networks(self):
        snap = GameSnapshot()
        assert action_features(snap).shape == (ACTION_NETWORK.input_size,) == (len(ACTION_FEATURES),)
        assert resource_features({}, snap).shape == (RESOURCE_NETWORK.input_size,) == (len(RESOURCE_FEATURES),)
        assert risk_features({}, snap).shape == (RISK_NETWORK.input_size,) == (len(RISK_FEATURES),)

    def test_action_features_order(self):
        vec = action_features({"health": 0.3, "nearby_threats": 25, "resources": {"iron": 7}})
        named = describe(ACTION_FEATURES, vec)

        assert named["health"] == pytest.approx(0.3)
        assert named["nearby_threats"] == 1.0
        assert named["iron"] == 7.0

    def test_resource_defaults(self):
        vec = describe(RESOURCE_FEATURES, resource_features({"type": "iron"}, {"current_goal": "iron"}))

        assert vec["quantity"] == 1.0
        assert vec["value"] == 1.0
        assert vec["accessibility"] == 1.0
        assert vec["matches_goal"] == 1.0

    def test_risk_features_from_action(self):
        vec = describe(RISK_FEATURES, risk_features({"requires_tools": True, "duration": 4}, GameSnapshot()))

        assert vec["requires_tools"] == 1.0
        assert vec["duration"] == 4.0


class TestNetwork:

    def test_softmax_output_sums_to_one(self):
        net = FeedForwardNetwork(ACTION_NETWORK, seed=0)
        out = net.predict(np.random.default_rng(1).random(20))

        assert out.shape == (10,)
        assert out.sum() == pytest.approx(1.0, abs=1e-5)

    def test_sigmoid_output_in_unit_interval(self):
        net = FeedForwardNetwork(RISK_NETWORK, seed=0)
        out = net.forward(np.random.default_rng(2).random((5, 12)) * 100)

        assert out.shape == (5, 1)
        assert np.all((out >= 0.0) & (out <= 1.0))

    def test_wrong_width_rejected(self):
        net = FeedForwardNetwork(RISK_NETWORK, seed=0)
        with pytest.raises(ValueError):
            net.predict(np.zeros(11))

    def test_seeded_init_is_deterministic(self):
        a = FeedForwardNetwork(RESOURCE_NETWORK, seed=3)
        b = FeedForwardNetwork(RESOURCE_NETWORK, seed=3)

        for wa, wb in zip(a.get_weights(), b.get_weights()):
            np.testing.assert_array_equal(wa, wb)

    def test_training_reduces_loss(self):
        net = FeedForwardNetwork(RISK_NETWORK, seed=0, learning_rate=0.01)
        rng = np.random.default_rng(0)
        x = rng.random((64, 12)).astype(np.float32)
        y = (x[:, :1] > 0.5).astype(np.float32)

        before = net.evaluate(x, y)
        after = net.train(x, y, epochs=30, batch_size=16)

        assert after < before

    def test_train_rejects_bad_shapes(self):
        net = FeedForwardNetwork(ACTION_NETWORK, seed=0)

        with pytest.raises(TrainingFailure):
            net.train(np.zeros((4, 19)), np.zeros((4, 10)))
        with pytest.raises(TrainingFailure):
            net.train(np.zeros((4, 20)), np.zeros((4, 9)))
        with pytest.raises(TrainingFailure):
            net.train(np.zeros((0, 20)), np.zeros((0, 10)))

    def test_ragged_batch_is_training_failure(self):
        net = FeedForwardNetwork(ACTION_NETWORK, seed=0)
        ragged = [[0.0] * 20, [0.0] * 19]

        with pytest.raises(TrainingFailure, match="ragged"):
            net.train(ragged, np.zeros((2, 10)))

    def test_layers_are_linear_with_relu(self):
        net = FeedForwardNetwork(RISK_NETWORK, seed=0)

        linear = [m for m in net.model if isinstance(m, torch.nn.Linear)]
        relus = [m for m in net.model if isinstance(m, torch.nn.ReLU)]
        assert [(m.in_features, m.out_features) for m in linear] == [(12, 48), (48, 24), (24, 12), (12, 1)]
        assert len(relus) == 3
        assert net.param_count == sum(w.size for w in net.get_weights())

    def test_training_updates_only_own_copy(self):
        source = FeedForwardNetwork(ACTION_NETWORK, seed=4)
        trainee = FeedForwardNetwork(ACTION_NETWORK, seed=5)
        trainee.set_weights(source.get_weights())
        before = source.get_weights()
        rng = np.random.default_rng(3)
        labels = np.eye(10, dtype=np.float32)[rng.integers(0, 10, 16)]

        trainee.train(rng.random((16, 20)), labels, epochs=2, batch_size=8)

        for a, b in zip(before, source.get_weights()):
            np.testing.assert_array_equal(a, b)
        assert any(not np.array_equal(a, b) for a, b in zip(before, trainee.get_weights()))

    def test_set_weights_shape_checked(self):
        net = FeedForwardNetwork(RISK_NETWORK, seed=0)
        weights = net.get_weights()
        weights[0] = np.zeros((3, 3))

        with pytest.raises(ValueError):
            net.set_weights(weights)


class TestArtifacts:

    def test_save_writes_three_files(self, tmp_path):
        net = FeedForwardNetwork(RISK_NETWORK, seed=0)
        path = net.save(str(tmp_path))

        assert sorted(os.listdir(path)) == ["model.json", "weights.bin", "weights_manifest.json"]
        with open(os.path.join(path, "weights_manifest.json")) as f:
            manifest = json.load(f)
        assert manifest["weights"][0] == {"name": "0.weight", "shape": [48, 12]}
        assert manifest["weights"][1] == {"name": "0.bias", "shape": [48]}
        assert os.path.getsize(os.path.join(path, "weights.bin")) == net.param_count * 4

    def test_save_load_round_trip(self, tmp_path):
        original = FeedForwardNetwork(ACTION_NETWORK, seed=1)
        original.save(str(tmp_path))

        restored = FeedForwardNetwork(ACTION_NETWORK, seed=99)
        restored.load(str(tmp_path))

        x = np.random.default_rng(5).random(20)
        np.testing.assert_allclose(restored.predict(x), original.predict(x), rtol=1e-6)

    def test_missing_artifacts(self, tmp_path):
        net = FeedForwardNetwork(RISK_NETWORK, seed=0)
        with pytest.raises(ModelLoadFailure):
            net.load(str(tmp_path))

    def test_corrupt_weights_keep_current(self, tmp_path):
        net = FeedForwardNetwork(RISK_NETWORK, seed=0)
        path = net.save(str(tmp_path))
        with open(os.path.join(path, "weights.bin"), "wb") as f:
            f.write(b"\x00" * 17)

        before = net.get_weights()
        with pytest.raises(ModelLoadFailure):
            net.load(str(tmp_path))
        for a, b in zip(before, net.get_weights()):
            np.testing.assert_array_equal(a, b)

    def test_topology_mismatch(self, tmp_path):
        FeedForwardNetwork(RISK_NETWORK, seed=0).save(str(tmp_path))
        path = os.path.join(str(tmp_path), RISK_NETWORK.name, "model.json")
        with open(path) as f:
            topology = json.load(f)
        topology["layer_sizes"] = [12, 8, 1]
        with open(path, "w") as f:
            json.dump(topology, f)

        with pytest.raises(ModelLoadFailure, match="topology"):
            FeedForwardNetwork(RISK_NETWORK, seed=0).load(str(tmp_path))


class TestActionTypes:

    def test_action_type_index(self):
        assert action_type_index("gather_wood") == ACTION_TYPES.index("gather")
        assert action_type_index("mine_stone") == ACTION_TYPES.index("mine")
        assert action_type_index("retreat") == ACTION_TYPES.index("rest")
        assert action_type_index("explore") == ACTION_TYPES.index("explore")
        assert action_type_index("dance") is None

    def test_risk_level(self):
        assert risk_level(0.1) == "low"
        assert risk_level(0.3) == "medium"
        assert risk_level(0.7) == "high"
        assert risk_level(0.8) == "critical"


class TestInferenceEngine:

    def test_predict_action(self, clock):
        engine = InferenceEngine(BrainConfig(seed=1), clock=clock)
        prediction = engine.predict_action(GameSnapshot())

        assert prediction.action in ACTION_TYPES
        assert 0.0 <= prediction.confidence <= 1.0
        assert len(prediction.alternatives) == 3
        assert all(alt["confidence"] <= prediction.confidence for alt in prediction.alternatives)

    def test_cache_hit(self, clock):
        engine = InferenceEngine(BrainConfig(seed=1), clock=clock)
        engine.predict_action(GameSnapshot(health=0.4))
        engine.predict_action(GameSnapshot(health=0.4))

        stats = engine.stats()
        assert stats["total_inferences"] == 1
        assert stats["cache_hits"] == 1
        assert stats["cache_hit_rate"] == 0.5

    def test_cache_expires(self, clock):
        engine = InferenceEngine(BrainConfig(seed=1), clock=clock)
        engine.predict_action(GameSnapshot())
        clock.advance(61)
        engine.predict_action(GameSnapshot())

        assert engine.stats()["total_inferences"] == 2

    def test_cache_bounded(self, clock):
        engine = InferenceEngine(BrainConfig(seed=1), clock=clock)
        for i in range(101):
            engine.predict_action(GameSnapshot(distance_from_home=float(i)))

        assert engine.stats()["cache_size"] == 81

    def test_prioritize_orders_by_score(self, clock):
        engine = InferenceEngine(BrainConfig(seed=2), clock=clock)
        resources = [{"type": "wood", "distance": 5}, {"type": "iron", "distance": 50, "value": 5}]

        ranked = engine.prioritize(resources, GameSnapshot())

        assert ranked[0]["score"] >= ranked[1]["score"]
        assert "score" not in resources[0]

    def test_assess_risk(self, clock):
        engine = InferenceEngine(BrainConfig(seed=3), clock=clock)
        assessment = engine.assess_risk("mine", GameSnapshot(nearby_threats=3))

        assert 0.0 <= assessment.score <= 1.0
        assert assessment.level == risk_level(assessment.score)

    def test_disabled_engine_is_neutral(self, clock):
        engine = InferenceEngine(BrainConfig(ml_enabled=False), clock=clock)
        resources = [{"type": "wood"}, {"type": "iron"}]

        assert engine.predict_action(GameSnapshot()) is None
        assert engine.prioritize(resources, GameSnapshot()) == resources
        risk = engine.assess_risk("mine", GameSnapshot())
        assert (risk.score, risk.level) == (0.5, "medium")
        assert engine.stats()["total_inferences"] == 0

    def test_swap_weights_clears_cache(self, clock):
        engine = InferenceEngine(BrainConfig(seed=1), clock=clock)
        engine.predict_action(GameSnapshot())

        engine.swap_weights(ACTION_NETWORK.name, engine.get_weights(ACTION_NETWORK.name))

        assert engine.stats()["cache_size"] == 0

    def test_load_models_missing_keeps_fresh(self, tmp_path, clock):
        engine = InferenceEngine(BrainConfig(seed=1, model_dir=str(tmp_path)), clock=clock)
        before = engine.predict_action(GameSnapshot())

        loaded = engine.load_models()

        assert loaded == {ACTION_NETWORK.name: False, RESOURCE_NETWORK.name: False, RISK_NETWORK.name: False}
        assert engine.predict_action(GameSnapshot()).action == before.action

    def test_save_then_load(self, tmp_path, clock):
        source = InferenceEngine(BrainConfig(seed=1, model_dir=str(tmp_path)), clock=clock)
        paths = source.save_models()
        target = InferenceEngine(BrainConfig(seed=50, model_dir=str(tmp_path)), clock=clock)

        assert len(paths) == 3
        assert all(target.load_models().values())
        assert (
            target.predict_action(GameSnapshot()).confidence
            == pytest.approx(source.predict_action(GameSnapshot()).confidence)
        )
