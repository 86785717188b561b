"""
续写链模块 (Continuation Chains)
组装动作判定、结构化续写与纯文本兜底续写三类调用的提示词与调用参数，
并定义两种响应约束策略 (Response Discipline)。
"""
import logging
from dataclasses import replace
from typing import List, Optional, Tuple

from core.exceptions import ConfigurationError
from core.schemas import (
    CodexEntry, ContinuationAction, ContinuationConfig, GenerationOptions,
    PacingReport, StructureContext
)
from core.text_stats import indent_width, tail
from chains.base import (
    format_codex, format_structure_context, get_context_limit, get_genre_style_guidance,
    get_language_instruction, get_length_config, get_length_instruction,
    get_mode_instruction, mode_ignores_length
)
from prompts import get_raw_prompt, render_prompt

logger = logging.getLogger(__name__)

ACTION_ENUM = [action.value for action in ContinuationAction]

CLASSIFIER_TEMPERATURE = 0.3
CLASSIFIER_MAX_TOKENS = 50
CONTENT_TEMPERATURE = 0.8
PLAIN_TEMPERATURE = 0.8
OPENING_TEMPERATURE = 0.9
OPENING_MAX_TOKENS = 4096


def continuation_schema(indent_spaces: int = 2) -> dict:
    """结构化续写的 JSON Schema (action 与 content 必填)"""
    return {
        "title": "SmartContinuation",
        "description": "The continuation content together with the structural action it performs.",
        "type": "object",
        "properties": {
            "action": {
                "type": "string",
                "enum": ACTION_ENUM,
                "description": "Whether to continue text, or create a new scene/chapter.",
            },
            "title": {
                "type": "string",
                "description": (
                    "REQUIRED for new_scene/new_chapter: A creative, descriptive title "
                    "(e.g., 'The Midnight Encounter' for scenes, 'Chapter 2: The Awakening' for chapters). "
                    "NEVER use generic titles like 'New Scene'."
                ),
            },
            "content": {
                "type": "string",
                "description": (
                    "The generated story content. MUST use \\n\\n for paragraph breaks "
                    f"and start each paragraph with {indent_spaces} spaces."
                ),
            },
            "summary": {
                "type": "string",
                "description": "A brief summary of the content (useful for new scene metadata).",
            },
        },
        "required": ["action", "content"],
    }


CONTINUATION_SCHEMA = continuation_schema()


# --- 响应约束策略 ---
class ResponseDiscipline:
    """决定如何让后端返回符合 action/title/content/summary 结构的 JSON"""
    name = "base"

    def prepare(self, system_prompt: str, options: GenerationOptions) -> Tuple[str, GenerationOptions]:
        raise NotImplementedError


class SchemaConstrainedDiscipline(ResponseDiscipline):
    """后端原生支持结构化输出：声明 Schema，由后端保证格式。"""
    name = "schema"

    def prepare(self, system_prompt, options):
        schema = options.schema or CONTINUATION_SCHEMA
        return system_prompt, replace(options, response_format="json", schema=schema)


class InstructionEnforcedDiscipline(ResponseDiscipline):
    """后端只能自由输出文本：在系统提示词末尾追加严格 JSON 指令，并请求 JSON 模式。"""
    name = "instruction"

    def prepare(self, system_prompt, options):
        suffix = get_raw_prompt("continuation_json_suffix")
        return system_prompt + suffix, replace(options, response_format="json", schema=None)


DISCIPLINES = {
    SchemaConstrainedDiscipline.name: SchemaConstrainedDiscipline,
    InstructionEnforcedDiscipline.name: InstructionEnforcedDiscipline,
}


def select_discipline(setting: Optional[str], capabilities: Optional[dict] = None) -> ResponseDiscipline:
    """
    根据 generation.response_discipline 设置选择策略。
    'auto' (默认) 时依据提供商模板的 structured_output 能力决定。
    """
    setting = (setting or "auto").strip().lower()
    if setting == "auto":
        setting = "schema" if (capabilities or {}).get("structured_output") else "instruction"
    discipline_cls = DISCIPLINES.get(setting)
    if discipline_cls is None:
        raise ConfigurationError(
            f"未知的响应约束策略: '{setting}'，可选值为 auto / {' / '.join(DISCIPLINES)}"
        )
    return discipline_cls()


# --- 提示词组装 ---
def _prior_text(current_text: str, config: ContinuationConfig) -> str:
    return tail(current_text or "", get_context_limit(config.context_size))


def get_user_instruction(config: ContinuationConfig) -> str:
    """用户自定义指令优先，否则使用续写模式的默认指令"""
    if config.instruction and config.instruction.strip():
        return config.instruction.strip()
    return get_mode_instruction(config.continuation_mode, config.language)


def build_classifier_prompts(
    current_text: str,
    codex: List[CodexEntry],
    structure: Optional[StructureContext],
    report: PacingReport,
    config: ContinuationConfig,
) -> Tuple[str, str]:
    """动作判定调用的 (系统提示词, 用户提示词)"""
    structure = structure or StructureContext()
    targets = config.pacing_targets
    total_scenes = structure.total_scenes_in_chapter or 0
    scene_words = structure.current_scene_word_count or 0

    system_prompt = render_prompt(
        "action_classifier_system",
        structure_context=format_structure_context(structure),
        pacing_hint=report.classifier_hint,
        language_instruction=get_language_instruction(config.language),
        codex_context=format_codex(codex),
    )

    scene_alert = ""
    if total_scenes > targets.scenes_per_chapter:
        scene_alert = "⚠️ CRITICAL: Chapter has EXCEEDED target scene count. You MUST output new_chapter."
    word_alert = ""
    if scene_words > targets.words_per_scene:
        word_alert = "⚠️ Current scene EXCEEDS target word count."

    user_prompt = render_prompt(
        "action_classifier_user",
        compact=False,
        prior_text=_prior_text(current_text, config),
        scene_title=structure.scene_title or "Unknown",
        scene_number=structure.scene_index + 1,
        total_scenes=structure.total_scenes_in_chapter or 1,
        target_scenes=targets.scenes_per_chapter,
        current_scenes=total_scenes,
        scene_alert=scene_alert,
        target_scene_words=targets.words_per_scene,
        current_scene_words=scene_words,
        word_alert=word_alert,
    )
    return system_prompt, user_prompt


def classifier_options(config: ContinuationConfig) -> GenerationOptions:
    return GenerationOptions(
        max_output_tokens=CLASSIFIER_MAX_TOKENS,
        temperature=CLASSIFIER_TEMPERATURE,
        response_format="text",
        timeout=config.classification_timeout,
    )


def build_continuation_prompts(
    current_text: str,
    codex: List[CodexEntry],
    structure: Optional[StructureContext],
    report: PacingReport,
    action: ContinuationAction,
    config: ContinuationConfig,
) -> Tuple[str, str]:
    """
    结构化续写调用的 (系统提示词, 用户提示词)。

    Args:
        action (ContinuationAction): 已判定的动作，要求模型原样写回 action 字段。
        report (PacingReport): 节奏评估结果，其 advisory 注入系统提示词。

    Returns:
        Tuple[str, str]: 未附加响应约束后缀的提示词对。
    """
    language = config.language
    ignore_length = mode_ignores_length(config.continuation_mode, config.mode_length_overrides)

    perspective = ""
    tone = ""
    themes = ""
    genre = subgenre = None
    if structure is not None:
        genre, subgenre = structure.genre, structure.subgenre
        if structure.narrative_perspective:
            perspective = (
                f"CRITICAL: Maintain consistent {structure.narrative_perspective} perspective throughout. "
                "Do not switch perspectives."
            )
        if structure.writing_tone:
            tone = f"Use a {structure.writing_tone} writing tone throughout the content."
        if structure.themes:
            themes = f"Explore these themes naturally in your writing: {', '.join(structure.themes)}."

    system_prompt = render_prompt(
        "continuation_system",
        genre_guidance=get_genre_style_guidance(genre or "Fiction", subgenre),
        action=action.value,
        structure_context=format_structure_context(structure),
        pacing_advisory=report.advisory,
        language_instruction=get_language_instruction(language),
        length_instruction="" if ignore_length else get_length_instruction(config.continuation_length, language),
        ignore_length_note=(
            "NOTE: For this continuation mode, you are NOT constrained by a specific word count. "
            "Generate as much or as little as needed for the scene."
            if ignore_length else ""
        ),
        perspective_instruction=perspective,
        tone_instruction=tone,
        themes_instruction=themes,
        indent_spaces=indent_width(language),
        title_requirements=(
            "" if action == ContinuationAction.CONTINUE else get_raw_prompt("continuation_title_requirements")
        ),
        codex_context=format_codex(codex),
    )
    user_prompt = render_prompt(
        "continuation_user",
        compact=False,
        prior_text=_prior_text(current_text, config),
        instruction=get_user_instruction(config),
        action=action.value,
    )
    return system_prompt, user_prompt


def continuation_options(config: ContinuationConfig) -> GenerationOptions:
    return GenerationOptions(
        max_output_tokens=get_length_config(config.continuation_length)["tokens"],
        temperature=CONTENT_TEMPERATURE,
        schema=continuation_schema(indent_width(config.language)),
        timeout=config.content_timeout,
    )


def build_plain_prompts(
    current_text: str,
    codex: List[CodexEntry],
    structure: Optional[StructureContext],
    config: ContinuationConfig,
) -> Tuple[str, str]:
    """纯文本兜底续写：不涉及动作切换与标题"""
    spaces = indent_width(config.language)
    system_prompt = render_prompt(
        "plain_continuation_system",
        language_instruction=get_language_instruction(config.language),
        length_instruction=get_length_instruction(config.continuation_length, config.language),
        structure_context=format_structure_context(structure),
        indent_spaces=spaces,
        indent_example=" " * spaces,
        codex_context=format_codex(codex),
    )
    user_prompt = render_prompt(
        "plain_continuation_user",
        compact=False,
        prior_text=_prior_text(current_text, config),
        instruction=get_user_instruction(config),
    )
    return system_prompt, user_prompt


def plain_options(config: ContinuationConfig) -> GenerationOptions:
    return GenerationOptions(
        max_output_tokens=get_length_config(config.continuation_length)["tokens"],
        temperature=PLAIN_TEMPERATURE,
        response_format="text",
        timeout=config.content_timeout,
    )


def build_rewrite_prompts(
    page_text: str,
    selection: str,
    codex: List[CodexEntry],
    structure: Optional[StructureContext],
    config: ContinuationConfig,
) -> Tuple[str, str]:
    """选中文本改写：以所在页为上下文，走纯文本续写提示词"""
    instruction = render_prompt("rewrite_instruction", compact=False, selection=selection)
    return build_plain_prompts(page_text, codex, structure, replace(config, instruction=instruction))


def build_opening_prompts(structure: Optional[StructureContext], config: ContinuationConfig) -> Tuple[str, str]:
    """新作品开篇场景，按题材与语言定制"""
    structure = structure or StructureContext()
    genre = structure.genre or "Fiction"
    spaces = indent_width(config.language)
    title = structure.project_title or "Untitled"
    system_prompt = render_prompt(
        "opening_system",
        genre=genre,
        subgenre_suffix=f" and {structure.subgenre}" if structure.subgenre else "",
        genre_tone=f"{genre} - {structure.subgenre}" if structure.subgenre else genre,
        language_instruction=get_language_instruction(config.language),
        title=title,
        author_line=f"Author: {structure.author}" if structure.author else "",
        indent_spaces=spaces,
        indent_example=" " * spaces,
    )
    user_prompt = render_prompt("opening_user", compact=False, title=title)
    return system_prompt, user_prompt


def opening_options(config: ContinuationConfig) -> GenerationOptions:
    return GenerationOptions(
        max_output_tokens=OPENING_MAX_TOKENS,
        temperature=OPENING_TEMPERATURE,
        response_format="text",
        timeout=config.content_timeout,
    )
