"""
业务对象定义 (Schemas)
定义系统各层级间传递的强类型数据结构，确保数据流透明且可预测。
"""
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, List, Dict, Any


class ContinuationAction(str, Enum):
    """续写动作：续写当前场景 / 新场景 / 新章节"""
    CONTINUE = "continue"
    NEW_SCENE = "new_scene"
    NEW_CHAPTER = "new_chapter"

    @classmethod
    def from_token(cls, token: Optional[str]) -> Optional["ContinuationAction"]:
        """精确匹配动作令牌，未知令牌返回 None。"""
        for member in cls:
            if member.value == token:
                return member
        return None


ACTION_TOKENS = tuple(a.value for a in ContinuationAction)


class CodexCategory(str, Enum):
    CHARACTER = "Character"
    LOCATION = "Location"
    ITEM = "Item"
    LORE = "Lore"
    FACTION = "Faction"
    SYSTEM = "System"
    SPECIES = "Species"
    EVENT = "Event"


@dataclass
class CodexEntry:
    """设定集条目 (只读输入，仅作为提示词上下文)"""
    name: str
    category: str = CodexCategory.CHARACTER.value
    description: str = ""
    tags: List[str] = field(default_factory=list)
    id: Optional[str] = None

    def to_dict(self):
        return asdict(self)


@dataclass
class Scene:
    """
    场景。content 是唯一权威文本，分页只是派生视图，
    写回时总是使用 "\\n".join(pages)。
    """
    id: str
    title: str
    content: str = ""
    summary: Optional[str] = None

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class LayoutProfile:
    """
    排版参数 (编辑会话内不可变)。
    默认值对应 96 DPI 下的 A4 页面：210mm 宽、48px 内边距、18px 衬线字体、2 倍行高。
    """
    width: float = 793.7
    padding: float = 48.0
    font_family: str = "serif"
    font_size: float = 18.0
    line_height: float = 2.0
    page_height: float = 1123.0
    fill_ratio: float = 0.95

    @property
    def capacity_height(self) -> float:
        return self.page_height * self.fill_ratio

    @property
    def content_width(self) -> float:
        return self.width - 2 * self.padding

    @property
    def line_height_px(self) -> float:
        return self.font_size * self.line_height

    @classmethod
    def from_config(cls, layout_config: Optional[Dict[str, Any]]) -> "LayoutProfile":
        """从 config.yaml 的 layout 段构造，忽略未知键。"""
        layout_config = layout_config or {}
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in layout_config.items() if k in known})


@dataclass(frozen=True)
class StructureContext:
    """
    故事结构快照 (单次续写调用的只读输入)
    """
    project_title: str = ""
    author: Optional[str] = None
    genre: str = ""
    subgenre: Optional[str] = None
    description: Optional[str] = None
    target_audience: Optional[str] = None
    narrative_perspective: Optional[str] = None
    writing_tone: Optional[str] = None
    themes: tuple = ()
    chapter_title: str = ""
    scene_title: str = ""
    scene_index: int = 0
    total_scenes_in_chapter: int = 1
    previous_scene_summary: Optional[str] = None
    current_scene_word_count: int = 0
    current_scene_page_count: int = 0
    current_page_index: Optional[int] = None
    target_scene_word_count: Optional[int] = None
    target_scenes_per_chapter: Optional[int] = None
    current_chapter_word_count: Optional[int] = None


@dataclass
class ContinuationResult:
    """一次续写编排的结构化结果"""
    action: ContinuationAction
    content: str
    title: Optional[str] = None
    summary: Optional[str] = None

    def to_dict(self):
        data = asdict(self)
        data["action"] = self.action.value
        return data


@dataclass(frozen=True)
class PacingTargets:
    words_per_scene: int = 2000
    scenes_per_chapter: int = 5

    @property
    def chapter_words(self) -> int:
        return self.words_per_scene * self.scenes_per_chapter


@dataclass(frozen=True)
class SceneProgress:
    """当前写作进度计数。chapter_words 缺省时沿用场景字数。"""
    scene_words: int = 0
    scene_count: int = 0
    chapter_words: Optional[int] = None

    @property
    def effective_chapter_words(self) -> int:
        return self.scene_words if self.chapter_words is None else self.chapter_words


class PacingSeverity(str, Enum):
    CRITICAL_CHAPTER_OVERRUN = "critical_chapter_overrun"
    CHAPTER_OVERRUN = "chapter_overrun"
    SCENE_OVERRUN = "scene_overrun"
    SCENE_MATURING = "scene_maturing"
    DEVELOPING = "developing"


@dataclass(frozen=True)
class PacingReport:
    severity: PacingSeverity
    advisory: str
    classifier_hint: str
    mandatory: bool
    suggested_action: ContinuationAction


@dataclass
class GenerationOptions:
    """单次后端调用参数"""
    max_output_tokens: int = 2048
    temperature: float = 0.8
    response_format: Optional[str] = None  # "json" | "text" | None
    schema: Optional[Dict[str, Any]] = None
    timeout: Optional[float] = None


@dataclass
class ContinuationConfig:
    """续写编排配置 (来自 config.yaml 的 generation / pacing 段及界面选择)"""
    language: str = "en"
    continuation_mode: str = "general"
    continuation_length: str = "medium"
    context_size: str = "medium"
    explicit_action: Optional[ContinuationAction] = None
    target_scene_word_count: int = 2000
    target_scenes_per_chapter: int = 5
    mode_length_overrides: Dict[str, bool] = field(default_factory=dict)
    instruction: Optional[str] = None
    classification_timeout: Optional[float] = 20.0
    content_timeout: Optional[float] = 120.0
    auto_scan_after_continue: bool = False
    scan_min_chars: int = 20
    clear_codex_before_scan: bool = False

    @property
    def pacing_targets(self) -> PacingTargets:
        return PacingTargets(self.target_scene_word_count, self.target_scenes_per_chapter)


@dataclass
class EditorContext:
    """
    编辑器运行时上下文 (领域模型)
    由界面层组装，与 Streamlit 彻底解耦。
    """
    pages: List[str] = field(default_factory=lambda: [""])
    focused_page_index: Optional[int] = None
    codex: List[CodexEntry] = field(default_factory=list)
    structure: StructureContext = field(default_factory=StructureContext)
    explicit_action: Optional[ContinuationAction] = None
    selection: Optional[str] = None
    scan_text: Optional[str] = None

    @property
    def target_index(self) -> int:
        """焦点页下标；未指定或已越界 (页面被合并后残留的旧焦点) 时取最后一页"""
        last = max(len(self.pages) - 1, 0)
        if self.focused_page_index is None:
            return last
        return min(max(self.focused_page_index, 0), last)


@dataclass
class SceneRequest:
    """需要由调用方新建的场景/章节"""
    kind: ContinuationAction
    title: str
    content: str
    summary: Optional[str] = None


@dataclass
class EditorResult:
    """编辑器业务执行结果"""
    pages: Optional[List[str]] = None
    focused_page_index: Optional[int] = None
    continuation: Optional[ContinuationResult] = None
    pending_scene: Optional[SceneRequest] = None
    new_codex_entries: Optional[List[CodexEntry]] = None
    codex_replaced: bool = False
