from __future__ import annotations

import json

import pytest

from chains.continuation import InstructionEnforcedDiscipline, SchemaConstrainedDiscipline, select_discipline
from core.exceptions import ConfigurationError, ResponseParseError, TransportError
from core.schemas import ContinuationAction, ContinuationConfig, StructureContext
from services.action_decider import ActionDecider
from services.continuation_service import ContinuationService


def _service(backend, decider, discipline=None) -> ContinuationService:  # type: ignore[no-untyped-def]
    return ContinuationService(
        content_backend=backend,
        decider=decider,
        discipline=discipline or InstructionEnforcedDiscipline(),
    )


def _json(**fields) -> str:  # type: ignore[no-untyped-def]
    return json.dumps(fields)


def test_structured_continuation(fake_backend, fake_decider, structure) -> None:  # type: ignore[no-untyped-def]
    backend = fake_backend([_json(action="new_scene", title="Into the Forest", content="  They ran.", summary="Escape")])
    result = _service(backend, fake_decider(ContinuationAction.NEW_SCENE)).continue_story("prior", [], structure)

    assert result.action == ContinuationAction.NEW_SCENE
    assert result.title == "Into the Forest"
    assert result.content == "  They ran."
    assert len(backend.calls) == 1


def test_determined_action_is_authoritative(fake_backend, fake_decider, structure) -> None:  # type: ignore[no-untyped-def]
    backend = fake_backend([_json(action="new_chapter", title="Chapter 2: Ash", content="text")])
    result = _service(backend, fake_decider(ContinuationAction.CONTINUE)).continue_story("prior", [], structure)
    assert result.action == ContinuationAction.CONTINUE


def test_decider_receives_pacing_report(fake_backend, fake_decider) -> None:  # type: ignore[no-untyped-def]
    decider = fake_decider(ContinuationAction.NEW_SCENE)
    backend = fake_backend([_json(action="new_scene", content="text")])
    struct = StructureContext(current_scene_word_count=2600, total_scenes_in_chapter=1)
    _service(backend, decider).continue_story("prior", [], struct)

    report = decider.calls[0]["report"]
    assert report.mandatory
    assert "you MUST aggressively wrap up the scene and output 'new_scene'." in backend.calls[0]["system"]


def test_explicit_action_skips_classification(fake_backend, structure) -> None:  # type: ignore[no-untyped-def]
    classifier = fake_backend()
    backend = fake_backend([_json(action="new_chapter", content="text", title="Chapter 2: Dawn")])
    config = ContinuationConfig(explicit_action=ContinuationAction.NEW_CHAPTER)
    result = _service(backend, ActionDecider(classifier)).continue_story("prior", [], structure, config)

    assert classifier.calls == []
    assert result.action == ContinuationAction.NEW_CHAPTER
    assert 'MUST be "new_chapter"' in backend.calls[0]["user"]


def test_parse_failure_falls_back_to_plain_text(fake_backend, fake_decider, structure) -> None:  # type: ignore[no-untyped-def]
    backend = fake_backend(['{"action": "new_scene"}', "\n  The rain kept falling.\n"])
    result = _service(backend, fake_decider(ContinuationAction.NEW_SCENE)).continue_story("prior", [], structure)

    assert result.action == ContinuationAction.CONTINUE
    assert result.title is None
    assert result.content == "  The rain kept falling."
    fallback = backend.calls[1]
    assert fallback["options"].response_format == "text"
    assert fallback["options"].temperature == 0.8
    assert "You are an expert fiction co-author." in fallback["system"]


def test_transport_failure_falls_back_to_plain_text(fake_backend, fake_decider, structure) -> None:  # type: ignore[no-untyped-def]
    backend = fake_backend([TransportError("timeout"), "Plain."])
    result = _service(backend, fake_decider()).continue_story("prior", [], structure)
    assert result.content == "Plain."


def test_separate_fallback_backend(fake_backend, fake_decider, structure) -> None:  # type: ignore[no-untyped-def]
    primary = fake_backend([TransportError("down")])
    fallback = fake_backend(["From fallback."])
    service = ContinuationService(
        content_backend=primary, fallback_backend=fallback,
        decider=fake_decider(), discipline=InstructionEnforcedDiscipline(),
    )
    assert service.continue_story("prior", [], structure).content == "From fallback."


def test_configuration_error_skips_fallback(fake_backend, fake_decider, structure) -> None:  # type: ignore[no-untyped-def]
    backend = fake_backend([ConfigurationError("missing key"), "never used"])
    with pytest.raises(ConfigurationError):
        _service(backend, fake_decider()).continue_story("prior", [], structure)
    assert len(backend.calls) == 1


def test_fallback_failure_propagates(fake_backend, fake_decider, structure) -> None:  # type: ignore[no-untyped-def]
    backend = fake_backend(["{broken", TransportError("still down")])
    with pytest.raises(TransportError):
        _service(backend, fake_decider()).continue_story("prior", [], structure)


def test_empty_fallback_raises(fake_backend, fake_decider, structure) -> None:  # type: ignore[no-untyped-def]
    backend = fake_backend(["{broken", "   \n"])
    with pytest.raises(ResponseParseError):
        _service(backend, fake_decider()).continue_story("prior", [], structure)


def test_instruction_discipline_appends_json_suffix(fake_backend, fake_decider, structure) -> None:  # type: ignore[no-untyped-def]
    backend = fake_backend([_json(action="continue", content="ok")])
    _service(backend, fake_decider()).continue_story("prior", [], structure)
    call = backend.calls[0]
    assert call["system"].endswith("Escape all newlines in strings as \\n. No markdown.")
    assert call["options"].response_format == "json"
    assert call["options"].schema is None


def test_schema_discipline_declares_schema(fake_backend, fake_decider, structure) -> None:  # type: ignore[no-untyped-def]
    backend = fake_backend([_json(action="continue", content="ok")])
    _service(backend, fake_decider(), SchemaConstrainedDiscipline()).continue_story("prior", [], structure)
    options = backend.calls[0]["options"]
    assert options.schema["required"] == ["action", "content"]
    assert options.schema["properties"]["action"]["enum"] == ["continue", "new_scene", "new_chapter"]
    assert "Output JSON strictly" not in backend.calls[0]["system"]


def test_discipline_auto_selection_follows_capabilities() -> None:
    assert isinstance(select_discipline("auto", {"structured_output": True}), SchemaConstrainedDiscipline)
    assert isinstance(select_discipline(None, {"json_mode": True}), InstructionEnforcedDiscipline)
    assert isinstance(select_discipline("instruction", {"structured_output": True}), InstructionEnforcedDiscipline)
    with pytest.raises(ConfigurationError):
        select_discipline("telepathy")


def test_generation_prompt_details(fake_backend, fake_decider, structure) -> None:  # type: ignore[no-untyped-def]
    backend = fake_backend([_json(action="continue", content="ok")])
    config = ContinuationConfig(language="zh", continuation_length="long")
    _service(backend, fake_decider()).continue_story("prior", [], structure, config)
    system = backend.calls[0]["system"]

    assert "Simplified Chinese" in system
    assert "Start EVERY paragraph in 'content' with 4 spaces." in system
    assert "续写约 1500-2000 字" in system
    assert "DETERMINED ACTION: continue" in system
    assert "TITLE REQUIREMENTS" not in system
    assert backend.calls[0]["options"].max_output_tokens == 2048


def test_title_requirements_for_structural_actions(fake_backend, fake_decider, structure) -> None:  # type: ignore[no-untyped-def]
    backend = fake_backend([_json(action="new_scene", content="ok")])
    _service(backend, fake_decider(ContinuationAction.NEW_SCENE)).continue_story("prior", [], structure)
    assert "TITLE REQUIREMENTS" in backend.calls[0]["system"]


def test_modes_that_ignore_length(fake_backend, fake_decider, structure) -> None:  # type: ignore[no-untyped-def]
    backend = fake_backend([_json(action="continue", content="ok"), _json(action="continue", content="ok")])
    service = _service(backend, fake_decider())
    service.continue_story("prior", [], structure, ContinuationConfig(continuation_mode="twist"))
    service.continue_story(
        "prior", [], structure,
        ContinuationConfig(continuation_mode="dialogue", mode_length_overrides={"dialogue": True}),
    )
    for call in backend.calls:
        assert "Write a continuation of about 300-600 words." not in call["system"]
        assert "NOT constrained by a specific word count" in call["system"]
    assert "plot twist" in backend.calls[0]["user"]


def test_classifier_outage_and_truncated_json_yield_plain_continuation(fake_backend, structure) -> None:  # type: ignore[no-untyped-def]
    classifier = fake_backend([TransportError("classifier down")])
    backend = fake_backend(['{"action": "new_scene", "title": "Ash', "  Plain text.\n"])
    result = _service(backend, ActionDecider(classifier)).continue_story("prior", [], structure)

    assert len(classifier.calls) == 1
    assert result.action == ContinuationAction.CONTINUE
    assert result.title is None
    assert result.content == "  Plain text."
    assert len(backend.calls) == 2
    assert backend.calls[1]["options"].response_format == "text"
