"""
节奏评估 (Pacing Evaluator)
根据场景字数、章节场景数与目标值的比例，给出节奏严重度与提示文本。
提示文本注入生成提示词，也作为动作判定的参考信号，本身从不强制决定动作。
"""
import math
import logging
from typing import Optional

from core.exceptions import ConfigurationError
from core.schemas import (
    ContinuationAction, PacingReport, PacingSeverity, PacingTargets, SceneProgress
)

logger = logging.getLogger(__name__)

DEFAULT_WORDS_PER_SCENE = 2000
DEFAULT_SCENES_PER_CHAPTER = 5

CRITICAL_MULTIPLIER = 1.5
SCENE_OVERRUN_MULTIPLIER = 1.25
SCENE_MATURING_MULTIPLIER = 0.75


def round_half_up(value: float) -> int:
    # .5 一律向上取整，不使用银行家舍入
    return int(math.floor(value + 0.5))


def classify(current: SceneProgress, target: PacingTargets) -> PacingReport:
    """
    按严重度从高到低判定节奏状态。

    Args:
        current (SceneProgress): 当前场景字数、章节场景数 (及可选的章节字数)。
        target (PacingTargets): 每场景目标字数、每章目标场景数。

    Returns:
        PacingReport: 严重度、生成提示、判定提示、是否为强制性要求、建议动作。
    """
    scene_words = current.scene_words
    chapter_words = current.effective_chapter_words
    scenes = current.scene_count
    words_per_scene = target.words_per_scene
    scenes_per_chapter = target.scenes_per_chapter
    chapter_target = target.chapter_words

    if chapter_words > chapter_target * CRITICAL_MULTIPLIER or scenes > scenes_per_chapter * CRITICAL_MULTIPLIER:
        status = (
            f"CRITICAL PACING WARNING: This chapter is extremely long ({scenes} scenes, "
            f"{round_half_up(chapter_words)} words). Target is {scenes_per_chapter} scenes or {chapter_target} words."
        )
        return PacingReport(
            severity=PacingSeverity.CRITICAL_CHAPTER_OVERRUN,
            advisory=f"{status} You MUST conclude the current narrative arc and output 'new_chapter' to start a fresh chapter.",
            classifier_hint=f"{status} You MUST output 'new_chapter' to start a fresh chapter.",
            mandatory=True,
            suggested_action=ContinuationAction.NEW_CHAPTER,
        )

    if chapter_words > chapter_target or scenes > scenes_per_chapter:
        status = (
            f"PACING ALERT: This chapter has exceeded target ({scenes} scenes > {scenes_per_chapter} scenes, "
            f"or {round_half_up(chapter_words)} words > {chapter_target} words)."
        )
        return PacingReport(
            severity=PacingSeverity.CHAPTER_OVERRUN,
            advisory=f"{status} You MUST look for opportunities to conclude the current arc and output 'new_chapter'.",
            classifier_hint=f"{status} You MUST output 'new_chapter' to start a fresh chapter.",
            mandatory=True,
            suggested_action=ContinuationAction.NEW_CHAPTER,
        )

    if scene_words > words_per_scene * SCENE_OVERRUN_MULTIPLIER:
        status = (
            f"PACING ALERT: The current scene is very long ({round_half_up(scene_words)} words > target "
            f"{math.floor(words_per_scene * SCENE_OVERRUN_MULTIPLIER)} words). Unless this is a climactic moment,"
        )
        return PacingReport(
            severity=PacingSeverity.SCENE_OVERRUN,
            advisory=f"{status} you MUST aggressively wrap up the scene and output 'new_scene'.",
            classifier_hint=f"{status} you MUST output 'new_scene' to conclude the scene.",
            mandatory=True,
            suggested_action=ContinuationAction.NEW_SCENE,
        )

    if scene_words > words_per_scene * SCENE_MATURING_MULTIPLIER:
        status = f"PACING GUIDE: The current scene is getting long ({round_half_up(scene_words)} words)."
        return PacingReport(
            severity=PacingSeverity.SCENE_MATURING,
            advisory=f"{status} Look for opportunities to conclude the scene and transition to 'new_scene'.",
            classifier_hint=f"{status} Consider 'new_scene' if the scene's conflict is resolved.",
            mandatory=False,
            suggested_action=ContinuationAction.NEW_SCENE,
        )

    return PacingReport(
        severity=PacingSeverity.DEVELOPING,
        advisory=(
            "PACING GUIDE: The current scene is still developing. Continue naturally, "
            "but if a time jump or location change is needed, use 'new_scene'."
        ),
        classifier_hint=(
            "PACING GUIDE: The current scene is still developing. "
            "'continue' unless there's a time jump or location change."
        ),
        mandatory=False,
        suggested_action=ContinuationAction.CONTINUE,
    )


def _positive_int(name: str, value, default: int) -> int:
    if value is None or value == 0:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        try:
            value = int(str(value).strip())
        except ValueError:
            raise ConfigurationError(f"节奏配置 '{name}' 必须为正整数，但收到 '{value}'。")
    if value < 0:
        raise ConfigurationError(f"节奏配置 '{name}' 必须为正整数，但收到 '{value}'。")
    return value or default


def targets_from_config(pacing_config: Optional[dict]) -> PacingTargets:
    """
    从 config.yaml 的 pacing 段读取目标值，未设置 (或为 0) 时使用默认值 (2000, 5)。
    """
    pacing_config = pacing_config or {}
    return PacingTargets(
        words_per_scene=_positive_int(
            "target_scene_word_count", pacing_config.get("target_scene_word_count"), DEFAULT_WORDS_PER_SCENE
        ),
        scenes_per_chapter=_positive_int(
            "target_scenes_per_chapter", pacing_config.get("target_scenes_per_chapter"), DEFAULT_SCENES_PER_CHAPTER
        ),
    )


def progress_from_structure(structure) -> SceneProgress:
    """从 StructureContext 中提取节奏计数"""
    return SceneProgress(
        scene_words=structure.current_scene_word_count or 0,
        scene_count=structure.total_scenes_in_chapter or 0,
        chapter_words=structure.current_chapter_word_count,
    )
