from __future__ import annotations

from collections import OrderedDict

import pytest

from core.exceptions import ConfigurationError
from infra.llm import factory

_import_class = factory._get_class_from_path

CONFIG = {
    "steps": {"continuation_writer": "deepseek_chat", "broken": "ghost_model", "no_template": "bare"},
    "models": {
        "deepseek_chat": {
            "template": "deepseek",
            "model": "deepseek-chat",
            "api_key_env": "TEST_DEEPSEEK_KEY",
            "base_url_env": "TEST_DEEPSEEK_URL",
        },
        "bare": {"model": "x"},
    },
}

TEMPLATES = {
    "deepseek": {
        "class": "tests.fake.ChatModel",
        "params": {"model": "string", "api_key_env": "secret_env", "base_url_env": "url_env"},
        "runtime_params": {"max_output_tokens": "max_tokens", "timeout": "timeout"},
        "capabilities": {"structured_output": False, "json_mode": True},
    },
}


class RecordingModel:
    def __init__(self, **kwargs):  # type: ignore[no-untyped-def]
        self.kwargs = kwargs


@pytest.fixture(autouse=True)
def fake_config(monkeypatch):  # type: ignore[no-untyped-def]
    monkeypatch.setattr(factory, "load_config", lambda: CONFIG)
    monkeypatch.setattr(factory, "get_provider_templates", lambda: TEMPLATES)
    monkeypatch.setattr(factory, "_get_class_from_path", lambda path: RecordingModel)
    monkeypatch.setenv("TEST_DEEPSEEK_KEY", "sk-test")
    monkeypatch.setenv("TEST_DEEPSEEK_URL", "https://api.example.com")


def test_get_llm_maps_env_and_runtime_params() -> None:
    llm = factory.get_llm("continuation_writer", temperature=0.3, max_output_tokens=50, timeout=20)
    assert llm.kwargs == {
        "temperature": 0.3,
        "model": "deepseek-chat",
        "api_key": "sk-test",
        "base_url": "https://api.example.com",
        "max_tokens": 50,
        "timeout": 20,
    }


def test_runtime_params_are_optional() -> None:
    llm = factory.get_llm("continuation_writer")
    assert "max_tokens" not in llm.kwargs
    assert "timeout" not in llm.kwargs


def test_missing_env_var_raises(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.delenv("TEST_DEEPSEEK_KEY")
    with pytest.raises(ConfigurationError, match="TEST_DEEPSEEK_KEY"):
        factory.get_llm("continuation_writer")


@pytest.mark.parametrize("alias", ["unknown_step", "broken", "no_template"])
def test_unresolvable_alias_raises(alias: str) -> None:
    with pytest.raises(ConfigurationError):
        factory.get_llm(alias)


def test_model_capabilities() -> None:
    assert factory.get_model_capabilities("continuation_writer") == {
        "structured_output": False,
        "json_mode": True,
    }


def test_instantiation_failure_raises_configuration_error(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    def explode(**kwargs):  # type: ignore[no-untyped-def]
        raise ValueError("bad params")

    monkeypatch.setattr(factory, "_get_class_from_path", lambda path: explode)
    with pytest.raises(ConfigurationError, match="bad params"):
        factory.get_llm("continuation_writer")


def test_class_path_import() -> None:
    assert _import_class("collections.OrderedDict") is OrderedDict
    with pytest.raises(ConfigurationError):
        _import_class("collections.NoSuchThing")
    with pytest.raises(ConfigurationError):
        _import_class("no_dots")
