from __future__ import annotations

import pytest

from core.schemas import ContinuationAction, StructureContext


class FakeBackend:
    """按顺序返回预置响应的 invoke_model 替身；异常实例会被抛出。"""

    def __init__(self, responses=None, capabilities=None):
        self.responses = list(responses or [])
        self.capabilities = capabilities or {}
        self.calls = []

    def invoke_model(self, system_prompt, user_prompt, options=None):  # type: ignore[no-untyped-def]
        self.calls.append({"system": system_prompt, "user": user_prompt, "options": options})
        if not self.responses:
            raise AssertionError("FakeBackend 没有更多预置响应")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class FakeDecider:
    def __init__(self, action: ContinuationAction = ContinuationAction.CONTINUE):
        self.action = action
        self.calls = []

    def decide(self, explicit_override, context, prior_text, report=None, codex=None, config=None):  # type: ignore[no-untyped-def]
        self.calls.append({"override": explicit_override, "report": report, "prior_text": prior_text})
        return explicit_override or self.action


@pytest.fixture
def fake_backend():
    return FakeBackend


@pytest.fixture
def fake_decider():
    return FakeDecider


@pytest.fixture
def structure() -> StructureContext:
    return StructureContext(
        project_title="The Glass Tower",
        genre="Fantasy",
        chapter_title="Chapter 1: Arrival",
        scene_title="The Gate",
        scene_index=0,
        total_scenes_in_chapter=1,
        current_scene_word_count=400,
        current_scene_page_count=1,
        current_page_index=0,
        target_scene_word_count=2000,
        target_scenes_per_chapter=5,
    )
