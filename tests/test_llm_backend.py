from __future__ import annotations

import json
from typing import Any, ClassVar, List

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.runnables import RunnableLambda

from core.exceptions import ConfigurationError, TransportError
from core.schemas import GenerationOptions
from infra.llm.backend import LLMBackend


class RecordingChatModel(FakeListChatModel):
    calls: ClassVar[List[dict]] = []

    def _call(self, messages, stop=None, run_manager=None, **kwargs: Any) -> str:  # type: ignore[no-untyped-def, override]
        RecordingChatModel.calls.append({"messages": messages, "kwargs": kwargs})
        return super()._call(messages, stop=stop, run_manager=run_manager, **kwargs)


class StructuredModel:
    """只实现 with_structured_output 的模型替身"""

    def __init__(self, result):  # type: ignore[no-untyped-def]
        self.result = result
        self.schemas = []

    def with_structured_output(self, schema):  # type: ignore[no-untyped-def]
        self.schemas.append(schema)
        return RunnableLambda(lambda prompt_value: self.result)


@pytest.fixture(autouse=True)
def reset_calls():  # type: ignore[no-untyped-def]
    RecordingChatModel.calls.clear()


def _factory(llm, seen=None):  # type: ignore[no-untyped-def]
    def build(alias, **kwargs):  # type: ignore[no-untyped-def]
        if seen is not None:
            seen.append((alias, kwargs))
        return llm
    return build


def test_plain_invocation_passes_runtime_options() -> None:
    seen = []
    backend = LLMBackend("continuation_writer", _factory(RecordingChatModel(responses=["hello"]), seen), {})
    options = GenerationOptions(max_output_tokens=512, temperature=0.3, response_format="text", timeout=9)

    assert backend.invoke_model("sys", "user", options) == "hello"
    assert seen == [("continuation_writer", {"temperature": 0.3, "max_output_tokens": 512, "timeout": 9})]
    messages = RecordingChatModel.calls[0]["messages"]
    assert [m.type for m in messages] == ["system", "human"]
    assert messages[0].content == "sys"


def test_braces_in_prompts_are_not_template_variables() -> None:
    backend = LLMBackend("w", _factory(RecordingChatModel(responses=["ok"])), {})
    backend.invoke_model('Output {"action": "continue"}', "He drew {a circle}.")
    messages = RecordingChatModel.calls[0]["messages"]
    assert messages[0].content == 'Output {"action": "continue"}'
    assert messages[1].content == "He drew {a circle}."


def test_json_mode_binds_response_format() -> None:
    backend = LLMBackend("w", _factory(RecordingChatModel(responses=["{}"])), {"json_mode": True})
    backend.invoke_model("sys", "user", GenerationOptions(response_format="json"))
    assert RecordingChatModel.calls[0]["kwargs"]["response_format"] == {"type": "json_object"}


def test_json_format_without_json_mode_sends_plain_request() -> None:
    backend = LLMBackend("w", _factory(RecordingChatModel(responses=["{}"])), {"json_mode": False})
    backend.invoke_model("sys", "user", GenerationOptions(response_format="json"))
    assert "response_format" not in RecordingChatModel.calls[0]["kwargs"]


def test_structured_output_is_serialized() -> None:
    model = StructuredModel({"action": "new_scene", "content": "雨夜。"})
    backend = LLMBackend("w", _factory(model), {"structured_output": True})
    schema = {"type": "object"}

    raw = backend.invoke_model("sys", "user", GenerationOptions(schema=schema))
    assert json.loads(raw) == {"action": "new_scene", "content": "雨夜。"}
    assert "雨夜" in raw
    assert model.schemas == [schema]


def test_empty_structured_output_returns_empty_string() -> None:
    backend = LLMBackend("w", _factory(StructuredModel(None)), {})
    assert backend.invoke_model("sys", "user", GenerationOptions(schema={"type": "object"})) == ""


def test_provider_errors_become_transport_errors() -> None:
    def boom(prompt_value):  # type: ignore[no-untyped-def]
        raise RuntimeError("connection reset")

    class Failing:
        def with_structured_output(self, schema):  # type: ignore[no-untyped-def]
            return RunnableLambda(boom)

    backend = LLMBackend("w", _factory(Failing()), {})
    with pytest.raises(TransportError, match="connection reset"):
        backend.invoke_model("sys", "user", GenerationOptions(schema={"type": "object"}))


def test_configuration_errors_pass_through() -> None:
    def factory(alias, **kwargs):  # type: ignore[no-untyped-def]
        raise ConfigurationError("missing key")

    with pytest.raises(ConfigurationError):
        LLMBackend("w", factory, {}).invoke_model("sys", "user")


def test_capabilities_resolved_lazily(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    import infra.llm.backend as backend_module

    monkeypatch.setattr(backend_module, "get_model_capabilities", lambda alias: {"structured_output": alias == "x"})
    assert LLMBackend("x").capabilities == {"structured_output": True}


def test_model_construction_errors_become_transport_errors() -> None:
    def factory(alias, **kwargs):  # type: ignore[no-untyped-def]
        raise RuntimeError("provider package import failed")

    with pytest.raises(TransportError, match="provider package import failed"):
        LLMBackend("w", factory, {}).invoke_model("sys", "user")
