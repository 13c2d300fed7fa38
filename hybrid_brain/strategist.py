"""
Remote strategist adapters.

The router talks to any remote decision source through one capability
interface: is_ready() and get_decision(snapshot). Everything a remote
model says is validated against a strict schema here, at the adapter
boundary; malformed answers become RemoteError and never reach the router
as data.

Adapters:
- NullStrategist: always not ready (offline operation)
- TextModelStrategist: wraps any prompt -> text callable
- LlamaStrategist: local GGUF model through llama-cpp-python
  (install with: pip install hybrid_brain[llm])
"""
from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import RemoteError, RemoteUnavailable
from .types import GameSnapshot, Priority

logger = logging.getLogger(__name__)

RemoteAction = Literal[
    "gather_wood",
    "mine_stone",
    "craft_tools",
    "build_shelter",
    "explore",
    "retreat",
    "eat",
    "heal",
]

REMOTE_ACTIONS: List[str] = list(RemoteAction.__args__)  # type: ignore[attr-defined]

# Static confidence the router assigns to a remote answer by its priority
PRIORITY_CONFIDENCE: Dict[Priority, float] = {
    Priority.CRITICAL: 0.95,
    Priority.HIGH: 0.8,
    Priority.MEDIUM: 0.6,
    Priority.LOW: 0.4,
}


class StrategistDecision(BaseModel):
    """Validated remote answer."""
    model_config = ConfigDict(extra="ignore", frozen=True)

    action: RemoteAction
    priority: Priority = Priority.MEDIUM
    reasoning: str = Field("", max_length=2000)
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)

    def estimated_confidence(self) -> float:
        """Explicit confidence if given, else the static priority map."""
        if self.confidence is not None:
            return self.confidence
        return PRIORITY_CONFIDENCE.get(self.priority, 0.5)


class PlanStep(BaseModel):
    """One step of a strategic plan."""
    model_config = ConfigDict(extra="ignore")

    action: str
    priority: Priority = Priority.MEDIUM
    resources_needed: List[str] = Field(default_factory=list)
    estimated_time: str = "5 minutes"


class RemoteStrategist(ABC):
    """Capability interface for remote decision sources."""

    name = "remote"

    @abstractmethod
    def is_ready(self) -> bool:
        """Whether a call has any chance of succeeding right now."""

    @abstractmethod
    def get_decision(self, snapshot: GameSnapshot) -> StrategistDecision:
        """
        Ask for the next action.

        Raises:
            RemoteUnavailable: strategist not ready
            RemoteError: call failed or answer failed validation
        """

    def get_plan(self, objectives: List[Dict[str, Any]]) -> List[PlanStep]:
        """Ask for a prioritized plan. Not every strategist can plan."""
        raise RemoteUnavailable(f"{self.name} does not support planning")


class NullStrategist(RemoteStrategist):
    """Strategist for offline operation. Never ready."""

    name = "null"

    def is_ready(self) -> bool:
        return False

    def get_decision(self, snapshot: GameSnapshot) -> StrategistDecision:
        raise RemoteUnavailable("no remote strategist configured")


def build_decision_prompt(snapshot: GameSnapshot) -> str:
    """Render the decision prompt for a text model."""
    threats = snapshot.nearby_threats or "none"
    return (
        "You are an autonomous agent in a survival sandbox world. "
        "Make a decision based on current state:\n\n"
        f"Health: {snapshot.health * 20:.0f}/20\n"
        f"Food: {snapshot.food * 20:.0f}/20\n"
        f"Time: {'Night' if snapshot.is_night else 'Day'}\n"
        f"Position: {json.dumps(snapshot.position.to_dict())}\n"
        f"Nearby Threats: {threats}\n"
        f"Inventory Status: {'Full' if snapshot.inventory_space <= 0.0 else 'Available'}\n"
        f"Tool Durability: {snapshot.tool_durability:.2f}\n"
        f"Resources: {json.dumps(snapshot.resources, sort_keys=True)}\n\n"
        "Prioritize in this order:\n"
        "1. Safety (health, food, threats)\n"
        "2. Tool maintenance\n"
        "3. Resource gathering\n"
        "4. Building/crafting\n"
        "5. Exploration\n\n"
        "Respond with a JSON object:\n"
        "{\n"
        f'  "action": "one of: {", ".join(REMOTE_ACTIONS)}",\n'
        '  "priority": "critical/high/medium/low",\n'
        '  "reasoning": "one sentence explanation"\n'
        "}"
    )


def build_plan_prompt(objectives: List[Dict[str, Any]]) -> str:
    return (
        "You are a strategy planner for a survival sandbox agent. Given these "
        "objectives, create a prioritized action plan:\n"
        f"{json.dumps(objectives, indent=2)}\n\n"
        "Return a JSON array of steps with: action, priority, resources_needed, "
        "estimated_time. Be concise and practical."
    )


_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def extract_json(text: str) -> Any:
    """
    Pull the first JSON value out of free text (markdown fences allowed).

    Raises:
        RemoteError: no parseable JSON found
    """
    if not text or not text.strip():
        raise RemoteError("empty response")

    fenced = _FENCE_RE.search(text)
    candidate = fenced.group(1) if fenced else text

    decoder = json.JSONDecoder()
    for idx, ch in enumerate(candidate):
        if ch not in "{[":
            continue
        try:
            value, _ = decoder.raw_decode(candidate[idx:])
            return value
        except json.JSONDecodeError:
            continue

    raise RemoteError(f"no JSON in response: {text[:80]!r}")


def parse_decision(text: str) -> StrategistDecision:
    """Parse and validate a remote decision. Malformed -> RemoteError."""
    data = extract_json(text)
    if not isinstance(data, dict):
        raise RemoteError("decision must be a JSON object")
    if isinstance(data.get("priority"), str):
        data["priority"] = data["priority"].strip().lower()
    try:
        return StrategistDecision.model_validate(data)
    except ValidationError as e:
        raise RemoteError(f"invalid decision: {e.error_count()} validation error(s)") from e


def parse_plan(text: str) -> List[PlanStep]:
    data = extract_json(text)
    if not isinstance(data, list):
        raise RemoteError("plan must be a JSON array")
    try:
        return [PlanStep.model_validate(step) for step in data]
    except ValidationError as e:
        raise RemoteError(f"invalid plan: {e.error_count()} validation error(s)") from e


class TextModelStrategist(RemoteStrategist):
    """
    Strategist backed by any prompt -> text function.

    Example:
        >>> def fake_model(prompt):
        ...     return '{"action": "explore", "priority": "low", "reasoning": "safe"}'
        >>> s = TextModelStrategist(fake_model)
        >>> s.get_decision(GameSnapshot()).action
        'explore'
    """

    name = "text-model"

    def __init__(self, generate: Optional[Callable[[str], str]], name: Optional[str] = None):
        self._generate = generate
        if name:
            self.name = name

    def is_ready(self) -> bool:
        return self._generate is not None

    def _complete(self, prompt: str) -> str:
        if not self.is_ready():
            raise RemoteUnavailable(f"{self.name} is not ready")
        try:
            return self._generate(prompt)  # type: ignore[misc]
        except Exception as e:
            raise RemoteError(f"{self.name} call failed: {e}") from e

    def get_decision(self, snapshot: GameSnapshot) -> StrategistDecision:
        text = self._complete(build_decision_prompt(snapshot))
        decision = parse_decision(text)
        logger.debug(f"{self.name} decided {decision.action} ({decision.priority.value})")
        return decision

    def get_plan(self, objectives: List[Dict[str, Any]]) -> List[PlanStep]:
        return parse_plan(self._complete(build_plan_prompt(objectives)))


class LlamaStrategist(TextModelStrategist):
    """Strategist running a local GGUF model through llama-cpp-python."""

    name = "llama"

    def __init__(
        self,
        model_path: str,
        n_ctx: int = 2048,
        n_threads: int = 4,
        n_gpu_layers: int = -1,
        max_tokens: int = 160,
        temperature: float = 0.2,
    ):
        from llama_cpp import Llama

        self.model_path = model_path
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.llm = Llama(
            model_path=model_path,
            n_ctx=n_ctx,
            n_threads=n_threads,
            n_gpu_layers=n_gpu_layers,
            verbose=False,
        )
        logger.info(f"Loaded strategist model: {model_path}")
        super().__init__(self._generate_text)

    def _generate_text(self, prompt: str) -> str:
        out = self.llm(
            prompt,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            stop=["\n\n\n"],
        )
        return out["choices"][0]["text"]


def build_strategist(model_path: Optional[str] = None, **kwargs) -> RemoteStrategist:
    """Return a LlamaStrategist when a model is configured, else NullStrategist."""
    if not model_path:
        return NullStrategist()
    return LlamaStrategist(model_path, **kwargs)
