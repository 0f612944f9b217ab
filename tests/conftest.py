"""
Fakes for the oracle and the surface, so the loop can be driven without a browser or an LLM.
"""

import json
from dataclasses import replace
from types import SimpleNamespace
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest

from navagent.exceptions import SurfaceUnavailableError
from navagent.models import (
    Action,
    ActionKind,
    ExecutionResult,
    FeedbackResult,
    GoalCheckResult,
    StartLocation,
    SurfaceSnapshot,
)
from navagent.planner import ReasoningOracle
from navagent.schemas import OracleResult
from navagent.surface import Surface


def snapshot(location: str, content: str = "", kind: str = "web") -> SurfaceSnapshot:
    return SurfaceSnapshot(surface_kind=kind, location=location, title=location, content=content)


def ok(value):
    return OracleResult.success(value)


def parse_fault(detail="bad json"):
    return OracleResult.failed("parse", detail)


class FakeOracle(ReasoningOracle):
    """Scripted oracle; every queue yields its last item once exhausted."""

    def __init__(self, start=None, actions=None, code=None, feedback=None, goals=None):
        self.start = start if start is not None else ok(StartLocation("https://www.bing.com"))
        self.actions = list(actions or [Action(ActionKind.CLICK, "button", "click the button")])
        self.code = list(code or [ok(["await page.click('button')"])])
        self.feedback = list(feedback or [ok(FeedbackResult(True, "page changed", ""))])
        self.goals = list(goals or [ok(GoalCheckResult(True, [("k", "v")]))])
        self.predict_calls = []
        self.code_calls = []
        self.feedback_calls = []
        self.goal_calls = []

    @staticmethod
    def _next(queue):
        return queue.pop(0) if len(queue) > 1 else queue[0]

    async def classify_start_location(self, goal, surface_kind="web", candidates=()):
        if isinstance(self.start, Exception):
            raise self.start
        return self.start

    async def predict_next_action(self, snapshot, goal, history, action_kinds=tuple(ActionKind)):
        self.predict_calls.append((snapshot, list(history)))
        item = self._next(self.actions)
        if isinstance(item, OracleResult):
            return item
        return ok(replace(item))

    async def generate_code(self, snapshot, goal, action, previous_attempts):
        self.code_calls.append(list(previous_attempts))
        return self._next(self.code)

    async def evaluate_action_feedback(self, before, after, action):
        self.feedback_calls.append((before, after, action))
        return self._next(self.feedback)

    async def evaluate_goal_completion(self, snapshot, goal, new_information):
        self.goal_calls.append((snapshot, new_information))
        return self._next(self.goals)


class FakeSurface(Surface):
    kind = "web"

    def __init__(self, snapshots: List[SurfaceSnapshot], results=None, candidates=()):
        self.snapshots = list(snapshots)
        self.results = list(results or [ExecutionResult(success=True)])
        self.candidates = list(candidates)
        self.opened = []
        self.executed = []
        self.restored = []

    async def open(self, location):
        self.opened.append(location)

    async def capture(self):
        if not self.snapshots:
            raise SurfaceUnavailableError("surface is gone")
        return self.snapshots.pop(0) if len(self.snapshots) > 1 else self.snapshots[0]

    async def execute(self, code):
        self.executed.append(code)
        return self.results.pop(0) if len(self.results) > 1 else self.results[0]

    async def candidate_locations(self):
        return self.candidates

    async def restore(self, snapshot):
        self.restored.append(snapshot)
        return True


def completion(content: str):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def fake_client():
    """AsyncOpenAI stand-in; queue JSON replies with `fake_client.reply(...)`."""
    client = MagicMock()
    client.chat.completions.create = AsyncMock()

    def reply(*payloads):
        client.chat.completions.create.side_effect = [
            completion(p if isinstance(p, str) else json.dumps(p)) for p in payloads
        ]

    client.reply = reply
    return client
