"""
提示词共享片段 (Prompt Fragments)
语言指令、题材风格指导、设定集与故事结构格式化，以及续写模式/长度/上下文档位表。
"""
from typing import List, Optional

from core.schemas import CodexEntry, StructureContext
from core.pacing import round_half_up

LANGUAGE_NAMES = {
    "en": "English",
    "zh": "Simplified Chinese (简体中文)",
    "ja": "Japanese (日本語)",
    "ko": "Korean (한국어)",
    "es": "Spanish (Español)",
    "fr": "French (Français)",
    "de": "German (Deutsch)",
    "it": "Italian (Italiano)",
    "ru": "Russian (Русский)",
    "pt": "Portuguese (Português)",
}

GENRE_GUIDANCE = {
    "Fantasy": "Focus on world-building, magical systems, and epic scales. Use descriptive language for settings and magical effects. Include sensory details for immersive fantasy environments.",
    "玄幻奇幻": "注重世界构建、魔法系统和宏大叙事。使用描述性语言描绘场景和魔法效果。加入感官细节营造沉浸式的奇幻环境。",
    "Xianxia/Wuxia": "Emphasize cultivation progress, martial arts techniques, and philosophical concepts. Use poetic descriptions of energy flow (qi) and combat sequences. Include references to cultivation realms and techniques.",
    "仙侠武侠": "强调修为进境、功法体系和哲学理念。使用诗意化的语言描述气机流动和战斗场面。提及境界、功法等修真术语。",
    "Urban": "Balance contemporary realism with genre elements. Focus on character relationships, modern urban settings, and relatable situations.",
    "都市": "平衡现代现实主义与题材元素。注重人物关系、现代都市环境和贴近生活的情境。",
    "Sci-Fi/Apocalypse": "Include technological or scientific details. Maintain logical consistency in world rules. Use precise language when describing technology. Consider implications of scientific advances.",
    "科幻": "包含技术或科学细节。保持世界规则的逻辑一致性。使用精确的语言描述技术。考虑科学进步的影响。",
    "Suspense/Mystery": "Build tension gradually. Use foreshadowing and red herrings. Maintain ambiguity and uncertainty. Reveal information strategically to maintain suspense.",
    "悬疑": "逐步建立紧张感。使用伏笔和误导。保持模糊和不确定性。策略性地揭示信息以维持悬念。",
    "History/Military": "Use period-appropriate language. Focus on tactical details, historical context, and authentic cultural elements. Maintain formal or dignified tone when appropriate.",
    "历史军事": "使用符合时代特征的语言。注重战术细节、历史背景和真实的文化元素。适当时候保持正式或庄重的基调。",
    "Game/Sports": "Include technical terminology relevant to the game/sport. Focus on action sequences, strategy, and competition. Use dynamic, energetic language.",
    "游戏竞技": "包含相关技术术语。注重动作场面、策略和竞争。使用动态、有活力的语言。",
    "Light Novel": "Use conversational, informal tone. Include internal monologues and character reactions. Emphasize dialogue and character interactions. Light, accessible prose.",
    "轻小说": "使用对话式、非正式的语调。包含内心独白和角色反应。强调对话和人物互动。轻松易懂的散文风格。",
}

SUBGENRE_GUIDANCE = {
    "异世争霸": "Focus on power progression, territory building, and strategic warfare. Include details about cultivation ranks, magical beasts, and resource management.",
    "魔法校园": "Emphasize school life, magical learning, and friendship dynamics. Include classroom scenes, magical exams, and coming-of-age themes.",
    "职场商战": "Focus on business strategy, office politics, and professional relationships. Realistic depiction of corporate environments.",
    "豪门总裁": "Emphasize power dynamics, wealth display, and romantic tension between powerful protagonists.",
    "穿越重生": "Balance knowledge from the protagonist's previous life with the new world's rules. Highlight the advantages of foresight.",
    "灵异悬疑": "Build supernatural tension through unexplained phenomena. Create atmosphere of mystery and fear.",
}

AUDIENCE_LABELS = {
    "children": "Children (ages 8-12)",
    "young_adult": "Young Adult (ages 12-18)",
    "adult": "Adult (ages 18+)",
    "general": "General Audience",
}

PERSPECTIVE_LABELS = {
    "first_person": "First Person (I, my)",
    "third_person_limited": "Third Person Limited (he/she/they - one character)",
    "third_person_omniscient": "Third Person Omniscient (all-knowing)",
    "second_person": "Second Person (you)",
}

# 续写模式：ignore_length 为 True 的模式不附加长度指令
CONTINUATION_MODES = {
    "general": {
        "ignore_length": False,
        "prompt": {"en": "Continue the story naturally.", "zh": "自然地续写故事。"},
    },
    "action": {
        "ignore_length": False,
        "prompt": {
            "en": "Continue the story with a vivid, fast-paced action sequence.",
            "zh": "以生动、节奏紧凑的动作场面续写故事。",
        },
    },
    "dialogue": {
        "ignore_length": False,
        "prompt": {
            "en": "Continue the story primarily through dialogue that reveals character and advances the plot.",
            "zh": "主要通过对话续写故事，借对话展现人物并推动情节。",
        },
    },
    "description": {
        "ignore_length": False,
        "prompt": {
            "en": "Continue the story with rich sensory description of the setting and atmosphere.",
            "zh": "以丰富的感官描写续写故事，刻画环境与氛围。",
        },
    },
    "twist": {
        "ignore_length": True,
        "prompt": {
            "en": "Continue the story by introducing an unexpected but plausible plot twist.",
            "zh": "续写故事，并引入一个出人意料但合乎情理的情节转折。",
        },
    },
}

# 续写长度：输出 token 上限与长度指令
CONTINUATION_LENGTHS = {
    "short": {
        "tokens": 512,
        "instruction": {"en": "Write a short continuation of about 150-300 words.", "zh": "续写约 300-500 字的简短内容。"},
    },
    "medium": {
        "tokens": 1024,
        "instruction": {"en": "Write a continuation of about 300-600 words.", "zh": "续写约 600-1000 字的内容。"},
    },
    "long": {
        "tokens": 2048,
        "instruction": {"en": "Write a long continuation of about 800-1200 words.", "zh": "续写约 1500-2000 字的较长内容。"},
    },
    "very_long": {
        "tokens": 4096,
        "instruction": {"en": "Write a very long continuation of about 1500-2500 words.", "zh": "续写约 3000-4000 字的长篇内容。"},
    },
}
DEFAULT_LENGTH = "medium"

# 上下文档位：截取前文末尾的字符数
CONTEXT_SIZES = {
    "small": 1000,
    "medium": 3000,
    "large": 8000,
    "huge": 20000,
}
DEFAULT_CONTEXT_CHARS = 3000

FALLBACK_SCENE_TITLES = {
    "Fantasy": ["The Hidden Path", "Whispers in the Dark", "The Ancient Promise", "Shadows Rising", "The Fateful Encounter"],
    "玄幻奇幻": ["隐秘之路", "黑暗低语", "远古誓言", "阴影升起", "宿命相遇"],
    "Xianxia/Wuxia": ["Breakthrough", "The Challenge", "Sword Drawn", "Cultivation Progress", "The Duel"],
    "仙侠武侠": ["突破", "挑战", "拔剑", "修为精进", "决战"],
    "Urban": ["A New Day", "Unexpected Visitor", "Late Night Call", "The Decision", "Changes"],
    "都市": ["新的一天", "不速之客", "深夜来电", "决定", "变化"],
    "Sci-Fi/Apocalypse": ["Signal Received", "The Discovery", "System Alert", "Beyond the Wall", "Contact"],
    "科幻": ["收到信号", "发现", "系统警报", "墙外", "接触"],
    "Suspense/Mystery": ["The Clue", "Hidden Truth", "Following Leads", "The Reveal", "Suspicion"],
    "悬疑": ["线索", "隐藏的真相", "追踪", "揭露", "怀疑"],
    "History/Military": ["The Battle Begins", "Strategy Meeting", "March to War", "The Siege", "Victory"],
    "历史军事": ["战斗开始", "战略会议", "进军", "围攻", "胜利"],
}
DEFAULT_SCENE_TITLES = ["Scene Continuation", "The Next Chapter", "Moving Forward", "A New Beginning"]

FALLBACK_CHAPTER_TITLES = {
    "Fantasy": ["The Awakening", "Into the Unknown", "Rising Storm", "Shadows and Light", "The Final Stand"],
    "玄幻奇幻": ["觉醒", "踏入未知", "风暴来袭", "光影交错", "最终之战"],
    "Urban": ["New Beginnings", "Crossroads", "Turning Points", "Revelations", "Moving On"],
    "都市": ["新的开始", "十字路口", "转折点", "真相", "前行"],
    "Sci-Fi": ["First Contact", "The Signal", "System Failure", "Beyond Earth", "New Horizons"],
    "科幻": ["初次接触", "信号", "系统故障", "地球之外", "新地平线"],
}
DEFAULT_CHAPTER_TITLES = ["Continuing On", "The Journey", "Next Steps"]


def get_language_instruction(language: str) -> str:
    return f"IMPORTANT: You MUST write the output in {LANGUAGE_NAMES.get(language, 'English')}."


def get_genre_style_guidance(genre: Optional[str], subgenre: Optional[str] = None) -> str:
    """题材风格指导，子题材有专门说明时追加在后面。"""
    base = GENRE_GUIDANCE.get(genre or "", "Write in a style appropriate for the genre.")
    if subgenre and subgenre in SUBGENRE_GUIDANCE:
        return f"{base}\n\nSubgenre Specific: {SUBGENRE_GUIDANCE[subgenre]}"
    return base


def format_codex(codex: List[CodexEntry]) -> str:
    """将设定集展平为以 --- 分隔的文本块"""
    if not codex:
        return "No Codex entries available."
    blocks = [
        f"[Category: {entry.category}]\n"
        f"Name: {entry.name}\n"
        f"Description: {entry.description}\n"
        f"Tags: {', '.join(entry.tags)}"
        for entry in codex
    ]
    return "\n---\n".join(blocks)


def format_structure_context(struct: Optional[StructureContext]) -> str:
    """
    将故事结构快照格式化为提示词段落。

    Args:
        struct (StructureContext): 结构快照，None 时返回空串。

    Returns:
        str: 以 === 分隔的多行文本。
    """
    if struct is None:
        return ""

    genre_line = f"Genre: {struct.genre}"
    if struct.subgenre:
        genre_line += f" ({struct.subgenre})"
    lines = [
        "=== STORY STRUCTURE & STYLE ===",
        f"Project: {struct.project_title}",
        genre_line,
    ]

    if struct.target_audience:
        lines.append(f"Target Audience: {AUDIENCE_LABELS.get(struct.target_audience, struct.target_audience)}")
    if struct.narrative_perspective:
        label = PERSPECTIVE_LABELS.get(struct.narrative_perspective, struct.narrative_perspective)
        lines.append(f"Narrative Perspective: {label}")
    if struct.writing_tone:
        lines.append(f"Writing Tone: {struct.writing_tone}")
    if struct.themes:
        lines.append(f"Themes: {', '.join(struct.themes)}")
    if struct.description:
        lines.append(f"Story Synopsis: {struct.description}")

    lines.append(f"Current Chapter: {struct.chapter_title}")
    lines.append(
        f"Current Scene: {struct.scene_title} "
        f"(Scene {struct.scene_index + 1} of {struct.total_scenes_in_chapter} in this chapter)"
    )

    if struct.target_scenes_per_chapter:
        target = struct.target_scenes_per_chapter
        total = struct.total_scenes_in_chapter
        if total > target:
            status = f" ⚠️ OVER TARGET (exceeds by {total - target})"
        else:
            status = f" (Target: {target})"
        lines.append(f"Target Scenes per Chapter: {target} (Current: {total}{status})")

    if struct.target_scene_word_count:
        target = struct.target_scene_word_count
        words = struct.current_scene_word_count or 0
        if words > target:
            status = f" ⚠️ EXCEEDS TARGET ({round_half_up((words / target - 1) * 100)}% over)"
        else:
            status = f" ({round_half_up(words / target * 100)}% of target)"
        lines.append(f"Target Words per Scene: {target} (Current: {words}{status})")

    lines.append(
        f"Current Scene Stats: {struct.current_scene_word_count or 0} words, "
        f"{struct.current_scene_page_count or 0} pages."
    )
    if struct.current_page_index is not None:
        lines.append(
            f"Currently Editing: Page {struct.current_page_index + 1} of {struct.current_scene_page_count or 0}"
        )
    if struct.previous_scene_summary:
        lines.append(f"Previous Scene Summary: {struct.previous_scene_summary}")

    lines.append("===============================")
    return "\n".join(lines)


def get_mode_instruction(mode: str, language: str) -> str:
    mode_config = CONTINUATION_MODES.get(mode)
    if not mode_config:
        return "Continue the story naturally."
    return mode_config["prompt"]["zh" if language == "zh" else "en"]


def mode_ignores_length(mode: str, overrides: Optional[dict] = None) -> bool:
    """模式默认忽略长度，或用户在该模式下打开了忽略长度开关"""
    default = CONTINUATION_MODES.get(mode, {}).get("ignore_length", False)
    return bool(default or (overrides or {}).get(mode, False))


def get_length_config(length: str) -> dict:
    return CONTINUATION_LENGTHS.get(length) or CONTINUATION_LENGTHS[DEFAULT_LENGTH]


def get_length_instruction(length: str, language: str) -> str:
    return get_length_config(length)["instruction"]["zh" if language == "zh" else "en"]


def get_context_limit(context_size: str) -> int:
    return CONTEXT_SIZES.get(context_size, DEFAULT_CONTEXT_CHARS)


def _titles_for(genre: Optional[str], table: dict, default: list) -> list:
    if genre:
        for key, titles in table.items():
            if key in genre:
                return titles
    return default


def fallback_scene_title(scene_number: int, genre: Optional[str] = None) -> str:
    """模型未给出标题时，按题材轮换备用场景标题"""
    titles = _titles_for(genre, FALLBACK_SCENE_TITLES, DEFAULT_SCENE_TITLES)
    return titles[scene_number % len(titles)]


def fallback_chapter_title(chapter_number: int = 2, genre: Optional[str] = None) -> str:
    titles = _titles_for(genre, FALLBACK_CHAPTER_TITLES, DEFAULT_CHAPTER_TITLES)
    return f"Chapter {chapter_number}: {titles[chapter_number % len(titles)]}"
