"""
Fixed-shape feed-forward scoring networks.

Each network is a torch ``nn.Sequential`` of ``nn.Linear`` layers with ReLU
between them, producing logits; ``forward``/``predict`` apply the softmax or
sigmoid output. Training uses ``torch.optim.Adam`` with cross-entropy
(softmax networks, soft label distributions) or binary cross-entropy
(sigmoid networks).

Callers exchange plain numpy arrays. Artifacts are a directory of three
files, the weights being the ``state_dict()`` tensors flattened in order:

    <model_dir>/<name>/model.json              topology
    <model_dir>/<name>/weights.bin             flat little-endian float32 blob
    <model_dir>/<name>/weights_manifest.json   tensor names and shapes

Weights are only ever read back into a network of the same topology.
"""
from __future__ import annotations

import json
import logging
import os
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import torch
import torch.nn as nn
import torch.optim as optim
from torch.utils.data import DataLoader, TensorDataset

from ..errors import ModelLoadFailure, TrainingFailure

logger = logging.getLogger(__name__)

ARTIFACT_FORMAT_VERSION = 2
MODEL_FILE = "model.json"
WEIGHTS_FILE = "weights.bin"
MANIFEST_FILE = "weights_manifest.json"


@dataclass(frozen=True)
class NetworkSpec:
    """Name, layer widths and output activation of one network."""
    name: str
    layer_sizes: Tuple[int, ...]
    output_activation: str

    @property
    def input_size(self) -> int:
        return self.layer_sizes[0]

    @property
    def output_size(self) -> int:
        return self.layer_sizes[-1]


ACTION_NETWORK = NetworkSpec("action-predictor", (20, 128, 64, 32, 10), "softmax")
RESOURCE_NETWORK = NetworkSpec("resource-prioritizer", (15, 64, 32, 16, 1), "sigmoid")
RISK_NETWORK = NetworkSpec("risk-assessor", (12, 48, 24, 12, 1), "sigmoid")


def build_layers(spec: NetworkSpec) -> nn.Sequential:
    """Linear layers with ReLU between them; the last layer emits logits."""
    layers: List[nn.Module] = []
    pairs = list(zip(spec.layer_sizes[:-1], spec.layer_sizes[1:]))
    for i, (fan_in, fan_out) in enumerate(pairs):
        layers.append(nn.Linear(fan_in, fan_out))
        if i < len(pairs) - 1:
            layers.append(nn.ReLU())
    return nn.Sequential(*layers)


class FeedForwardNetwork:
    """
    Dense scoring network.

    Example:
        >>> net = FeedForwardNetwork(RISK_NETWORK, seed=0)
        >>> out = net.predict(np.zeros(12))
        >>> out.shape
        (1,)
    """

    def __init__(
        self,
        spec: NetworkSpec,
        seed: Optional[int] = None,
        learning_rate: float = 0.001,
    ):
        if spec.output_activation == "softmax":
            self.activation: nn.Module = nn.Softmax(dim=-1)
            self.loss_fn: nn.Module = nn.CrossEntropyLoss()
        elif spec.output_activation == "sigmoid":
            self.activation = nn.Sigmoid()
            self.loss_fn = nn.BCEWithLogitsLoss()
        else:
            raise ValueError(f"unsupported output activation: {spec.output_activation}")

        self.spec = spec
        self.learning_rate = learning_rate

        self._shuffle = torch.Generator()
        if seed is None:
            self.model = build_layers(spec)
        else:
            self._shuffle.manual_seed(seed)
            with torch.random.fork_rng(devices=[]):
                torch.manual_seed(seed)
                self.model = build_layers(spec)
        self.model.eval()
        self._reset_optimizer()

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def param_count(self) -> int:
        return sum(p.numel() for p in self.model.parameters())

    def _reset_optimizer(self) -> None:
        self.optimizer = optim.Adam(self.model.parameters(), lr=self.learning_rate)

    # ------------------------------------------------------------------
    # Forward
    # ------------------------------------------------------------------

    def forward(self, x: np.ndarray) -> np.ndarray:
        """Batch forward pass: (n, input_size) -> (n, output_size)."""
        batch = np.atleast_2d(np.asarray(x, dtype=np.float32))
        if batch.shape[1] != self.spec.input_size:
            raise ValueError(
                f"{self.name} expects {self.spec.input_size} features, got {batch.shape[1]}"
            )
        with torch.no_grad():
            out = self.activation(self.model(torch.from_numpy(batch)))
        return out.numpy()

    def predict(self, features: Sequence[float]) -> np.ndarray:
        """Single-sample forward pass returning a 1-D output vector."""
        return self.forward(np.asarray(features, dtype=np.float32).reshape(1, -1))[0]

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def _as_tensors(self, inputs, targets) -> Tuple[torch.Tensor, torch.Tensor]:
        try:
            x = np.asarray(inputs, dtype=np.float32)
            y = np.asarray(targets, dtype=np.float32)
        except ValueError as e:
            raise TrainingFailure(f"{self.name}: ragged batch ({e})") from e
        if x.ndim != 2 or x.shape[1] != self.spec.input_size:
            raise TrainingFailure(f"{self.name}: bad input shape {x.shape}")
        if y.ndim != 2 or y.shape != (x.shape[0], self.spec.output_size):
            raise TrainingFailure(f"{self.name}: bad target shape {y.shape}")
        if x.shape[0] == 0:
            raise TrainingFailure(f"{self.name}: empty batch")
        return torch.from_numpy(x), torch.from_numpy(y)

    def evaluate(self, inputs: np.ndarray, targets: np.ndarray) -> float:
        """Loss over (inputs, targets) without updating anything."""
        x, y = self._as_tensors(inputs, targets)
        with torch.no_grad():
            return float(self.loss_fn(self.model(x), y).item())

    def train(
        self,
        inputs: np.ndarray,
        targets: np.ndarray,
        epochs: int = 5,
        batch_size: int = 32,
        shuffle: bool = True,
    ) -> float:
        """
        Fit on (inputs, targets) with minibatch Adam.

        Returns:
            Loss over the full set after the final epoch

        Raises:
            TrainingFailure: ragged or mis-shaped batch, or the loss goes
                non-finite
        """
        x, y = self._as_tensors(inputs, targets)
        loader = DataLoader(
            TensorDataset(x, y),
            batch_size=max(1, batch_size),
            shuffle=shuffle,
            generator=self._shuffle,
        )

        self.model.train()
        try:
            for epoch in range(max(1, epochs)):
                epoch_loss = 0.0
                for batch_x, batch_y in loader:
                    self.optimizer.zero_grad()
                    loss = self.loss_fn(self.model(batch_x), batch_y)
                    if not torch.isfinite(loss):
                        raise TrainingFailure(f"{self.name}: non-finite loss in epoch {epoch + 1}")
                    loss.backward()
                    self.optimizer.step()
                    epoch_loss += loss.item()
                logger.debug(f"{self.name} epoch {epoch + 1}: loss {epoch_loss / len(loader):.4f}")
        finally:
            self.model.eval()

        final_loss = self.evaluate(x.numpy(), y.numpy())
        if not np.isfinite(final_loss):
            raise TrainingFailure(f"{self.name}: non-finite loss")
        return final_loss

    # ------------------------------------------------------------------
    # Weights
    # ------------------------------------------------------------------

    def tensor_names(self) -> List[str]:
        return list(self.model.state_dict().keys())

    def get_weights(self) -> List[np.ndarray]:
        """Copies of every ``state_dict()`` tensor, in order."""
        return [t.detach().cpu().numpy().copy() for t in self.model.state_dict().values()]

    def set_weights(self, tensors: Sequence[np.ndarray]) -> None:
        """Replace every tensor. Shapes must match exactly."""
        current = self.model.state_dict()
        if len(tensors) != len(current):
            raise ValueError(f"expected {len(current)} tensors, got {len(tensors)}")

        replacement = OrderedDict()
        for (key, have), new in zip(current.items(), tensors):
            if tuple(np.shape(new)) != tuple(have.shape):
                raise ValueError(f"shape mismatch for {key}: {np.shape(new)} vs {tuple(have.shape)}")
            replacement[key] = torch.tensor(np.asarray(new, dtype=np.float32))

        self.model.load_state_dict(replacement)
        self._reset_optimizer()

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def topology(self) -> Dict:
        return {
            "format_version": ARTIFACT_FORMAT_VERSION,
            "name": self.spec.name,
            "layer_sizes": list(self.spec.layer_sizes),
            "hidden_activation": "relu",
            "output_activation": self.spec.output_activation,
        }

    def _expected_tensors(self) -> List[Tuple[str, List[int]]]:
        return [(key, list(t.shape)) for key, t in self.model.state_dict().items()]

    def save(self, model_dir: str) -> str:
        """Write artifacts to model_dir/<name>/. Returns that directory."""
        path = os.path.join(model_dir, self.spec.name)
        os.makedirs(path, exist_ok=True)

        manifest = {
            "format_version": ARTIFACT_FORMAT_VERSION,
            "dtype": "float32",
            "weights": [{"name": name, "shape": shape} for name, shape in self._expected_tensors()],
        }
        blob = np.concatenate([t.astype("<f4").ravel() for t in self.get_weights()]).tobytes()

        _atomic_write(os.path.join(path, WEIGHTS_FILE), blob)
        _atomic_write(os.path.join(path, MANIFEST_FILE), json.dumps(manifest, indent=2).encode())
        _atomic_write(os.path.join(path, MODEL_FILE), json.dumps(self.topology(), indent=2).encode())
        return path

    def load(self, model_dir: str) -> None:
        """
        Replace weights with those saved under model_dir/<name>/.

        Raises:
            ModelLoadFailure: files missing, unreadable or shaped for a
                different topology. The current weights are untouched.
        """
        path = os.path.join(model_dir, self.spec.name)
        try:
            with open(os.path.join(path, MODEL_FILE), "r", encoding="utf-8") as f:
                topology = json.load(f)
            with open(os.path.join(path, MANIFEST_FILE), "r", encoding="utf-8") as f:
                manifest = json.load(f)
            with open(os.path.join(path, WEIGHTS_FILE), "rb") as f:
                blob = f.read()
        except FileNotFoundError as e:
            raise ModelLoadFailure(self.name, f"missing artifact {os.path.basename(e.filename or '')}") from e
        except (OSError, ValueError) as e:
            raise ModelLoadFailure(self.name, str(e)) from e

        if list(topology.get("layer_sizes", [])) != list(self.spec.layer_sizes):
            raise ModelLoadFailure(self.name, f"topology mismatch: {topology.get('layer_sizes')}")
        if topology.get("output_activation") != self.spec.output_activation:
            raise ModelLoadFailure(self.name, "output activation mismatch")

        expected = self._expected_tensors()
        declared = [(w.get("name"), list(w.get("shape", []))) for w in manifest.get("weights", [])]
        if declared != expected:
            raise ModelLoadFailure(self.name, "weights manifest does not match topology")

        if len(blob) % 4:
            raise ModelLoadFailure(self.name, "weights.bin is truncated")
        flat = np.frombuffer(blob, dtype="<f4")
        total = sum(int(np.prod(shape)) for _, shape in expected)
        if flat.size != total:
            raise ModelLoadFailure(self.name, f"weights.bin holds {flat.size} values, expected {total}")
        if not np.all(np.isfinite(flat)):
            raise ModelLoadFailure(self.name, "weights contain non-finite values")

        tensors = []
        offset = 0
        for _, shape in expected:
            size = int(np.prod(shape))
            tensors.append(flat[offset:offset + size].reshape(shape).astype(np.float32))
            offset += size
        self.set_weights(tensors)
        logger.info(f"Loaded {self.name} ({self.param_count} parameters) from {path}")


def _atomic_write(path: str, data: bytes) -> None:
    temp_path = path + ".tmp"
    with open(temp_path, "wb") as f:
        f.write(data)
    os.replace(temp_path, path)
