from __future__ import annotations

import pytest

from core.exceptions import ConfigurationError
from core.pacing import classify, progress_from_structure, targets_from_config
from core.schemas import (
    ContinuationAction, PacingSeverity, PacingTargets, SceneProgress, StructureContext
)

TARGETS = PacingTargets(words_per_scene=2000, scenes_per_chapter=5)


def test_developing_scene_continues() -> None:
    report = classify(SceneProgress(scene_words=500, scene_count=1), TARGETS)
    assert report.severity == PacingSeverity.DEVELOPING
    assert report.suggested_action == ContinuationAction.CONTINUE
    assert not report.mandatory
    assert report.advisory == (
        "PACING GUIDE: The current scene is still developing. Continue naturally, "
        "but if a time jump or location change is needed, use 'new_scene'."
    )


def test_maturing_scene_is_advisory_only() -> None:
    report = classify(SceneProgress(scene_words=1600, scene_count=1), TARGETS)
    assert report.severity == PacingSeverity.SCENE_MATURING
    assert report.suggested_action == ContinuationAction.NEW_SCENE
    assert not report.mandatory
    assert "(1600 words)" in report.advisory


def test_scene_overrun_must_start_new_scene() -> None:
    report = classify(SceneProgress(scene_words=2600, scene_count=1), TARGETS)
    assert report.severity == PacingSeverity.SCENE_OVERRUN
    assert report.mandatory
    assert report.suggested_action == ContinuationAction.NEW_SCENE
    assert "(2600 words > target 2500 words)" in report.advisory
    assert "you MUST aggressively wrap up the scene and output 'new_scene'." in report.advisory
    assert "you MUST output 'new_scene' to conclude the scene." in report.classifier_hint


def test_chapter_overrun_by_scene_count() -> None:
    report = classify(SceneProgress(scene_words=100, scene_count=6), TARGETS)
    assert report.severity == PacingSeverity.CHAPTER_OVERRUN
    assert report.mandatory
    assert report.suggested_action == ContinuationAction.NEW_CHAPTER


def test_critical_overrun_by_scene_count() -> None:
    report = classify(SceneProgress(scene_words=100, scene_count=8), TARGETS)
    assert report.severity == PacingSeverity.CRITICAL_CHAPTER_OVERRUN
    assert report.advisory.startswith("CRITICAL PACING WARNING: This chapter is extremely long (8 scenes, 100 words).")


def test_critical_overrun_by_words() -> None:
    words = int(TARGETS.chapter_words * 1.6)
    report = classify(SceneProgress(scene_words=words, scene_count=1), TARGETS)
    assert report.severity == PacingSeverity.CRITICAL_CHAPTER_OVERRUN
    assert report.suggested_action == ContinuationAction.NEW_CHAPTER


def test_explicit_chapter_words_take_precedence() -> None:
    report = classify(SceneProgress(scene_words=300, scene_count=2, chapter_words=11000), TARGETS)
    assert report.severity == PacingSeverity.CHAPTER_OVERRUN


def test_most_severe_tier_wins() -> None:
    # 同时满足场景超长与章节超长时按章节处理
    report = classify(SceneProgress(scene_words=2600, scene_count=6), TARGETS)
    assert report.severity == PacingSeverity.CHAPTER_OVERRUN


def test_targets_default_when_unset_or_zero() -> None:
    assert targets_from_config(None) == PacingTargets(2000, 5)
    assert targets_from_config({"target_scene_word_count": 0, "target_scenes_per_chapter": None}) == PacingTargets(2000, 5)
    assert targets_from_config({"target_scene_word_count": "3000"}) == PacingTargets(3000, 5)


@pytest.mark.parametrize("value", [-1, "many", 2.5])
def test_invalid_targets_raise(value) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ConfigurationError):
        targets_from_config({"target_scenes_per_chapter": value})


def test_progress_from_structure() -> None:
    struct = StructureContext(current_scene_word_count=1234, total_scenes_in_chapter=3)
    progress = progress_from_structure(struct)
    assert progress == SceneProgress(scene_words=1234, scene_count=3)
    assert progress.effective_chapter_words == 1234
