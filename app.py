import streamlit as st
import logging
from config import load_environment
from config import loader as config_manager
from services import workflow as workflow_manager
from core import logger as logger_config
from core.exceptions import LLMOperationError, ConfigurationError, LayoutError
from core.pagination import join_pages
from core.schemas import CodexEntry, ContinuationAction, EditorContext, StructureContext
from core.text_stats import count_words
from chains.base import CONTINUATION_LENGTHS, CONTINUATION_MODES, CONTEXT_SIZES, LANGUAGE_NAMES

# 引入 UI 组件
from ui_components.editor_view import render_editor_view

# --- 初始化 ---
load_environment()
logger_config.setup_logging()
app_logger = logging.getLogger(__name__)

st.set_page_config(page_title="Manuscript 智能续写", page_icon="📖", layout="wide")

DEFAULT_STATE = {
    "project_title": "未命名作品",
    "author": "",
    "genre": "Fantasy",
    "subgenre": "",
    "description": "",
    "narrative_perspective": "",
    "writing_tone": "",
    "themes": "",
    "chapter_title": "Chapter 1",
    "scene_title": "Opening",
    "scene_index": 0,
    "total_scenes_in_chapter": 1,
    "previous_scene_summary": "",
    "pages": [""],
    "pages_version": 0,
    "focused_page_index": None,
    "codex": [],
    "explicit_action": None,
    "is_generating": False,
    "pending_scene": None,
}


def init_session_state():
    for key, value in DEFAULT_STATE.items():
        if key not in st.session_state:
            st.session_state[key] = list(value) if isinstance(value, list) else value


def set_pages(pages, focused_page_index=None):
    """以新页面列表替换当前场景，并刷新所有分页输入框"""
    st.session_state.pages = pages
    st.session_state.focused_page_index = focused_page_index
    st.session_state.pages_version += 1


def build_structure_context(full_config: dict) -> StructureContext:
    pages = st.session_state.pages
    pacing = full_config.get("pacing") or {}
    themes = tuple(t.strip() for t in st.session_state.themes.split(",") if t.strip())
    focused = st.session_state.focused_page_index
    return StructureContext(
        project_title=st.session_state.project_title,
        author=st.session_state.author or None,
        genre=st.session_state.genre,
        subgenre=st.session_state.subgenre or None,
        description=st.session_state.description or None,
        narrative_perspective=st.session_state.narrative_perspective or None,
        writing_tone=st.session_state.writing_tone or None,
        themes=themes,
        chapter_title=st.session_state.chapter_title,
        scene_title=st.session_state.scene_title,
        scene_index=st.session_state.scene_index,
        total_scenes_in_chapter=st.session_state.total_scenes_in_chapter,
        previous_scene_summary=st.session_state.previous_scene_summary or None,
        current_scene_word_count=count_words(join_pages(pages)),
        current_scene_page_count=len(pages),
        current_page_index=focused if focused is not None else len(pages) - 1,
        target_scene_word_count=pacing.get("target_scene_word_count"),
        target_scenes_per_chapter=pacing.get("target_scenes_per_chapter"),
    )


def run_step_with_spinner(step_name: str, spinner_text: str, full_config: dict, overrides: dict = None,
                          selection: str = None, scan_text: str = None):
    """带 Spinner 的步骤运行包装器；is_generating 为真时拒绝并发触发"""
    if st.session_state.is_generating:
        st.warning("正在生成中，请稍候。")
        return None

    # 1. 将 UI 状态封装为领域上下文
    context = EditorContext(
        pages=list(st.session_state.pages),
        focused_page_index=st.session_state.focused_page_index,
        codex=list(st.session_state.codex),
        structure=build_structure_context(full_config),
        explicit_action=st.session_state.explicit_action,
        selection=selection,
        scan_text=scan_text,
    )

    st.session_state.is_generating = True
    with st.spinner(spinner_text):
        try:
            # 2. 调用业务流
            result = workflow_manager.run_step(step_name, context, full_config, overrides)

            # 3. 将结果同步回 UI 状态
            if result.pages is not None:
                set_pages(result.pages, result.focused_page_index)
            if result.pending_scene is not None:
                st.session_state.pending_scene = result.pending_scene
            if result.codex_replaced:
                st.session_state.codex = list(result.new_codex_entries or [])
                st.toast(f"设定集已按扫描结果重建 ({len(st.session_state.codex)} 个条目)")
            elif result.new_codex_entries:
                st.session_state.codex.extend(result.new_codex_entries)
                st.toast(f"设定集新增 {len(result.new_codex_entries)} 个条目")

            st.success(f"步骤 '{step_name}' 完成！")
            return result
        except (LLMOperationError, ConfigurationError, LayoutError) as e:
            st.error(str(e))
            return None
        except Exception as e:
            st.error(f"未知错误: {e}")
            app_logger.error(f"Error in {step_name}: {e}", exc_info=True)
            return None
        finally:
            st.session_state.is_generating = False


def render_sidebar(full_config: dict) -> dict:
    """作品信息、续写参数与设定集；返回本次续写的临时覆盖参数"""
    generation = full_config.get("generation") or {}
    with st.sidebar:
        st.title(f"📖 {st.session_state.project_title}")

        with st.expander("📘 作品信息", expanded=False):
            st.text_input("作品名", key="project_title")
            st.text_input("作者", key="author")
            st.text_input("题材", key="genre")
            st.text_input("子题材", key="subgenre")
            st.text_area("简介", key="description", height=80)
            st.text_input("叙事视角", key="narrative_perspective", placeholder="third_person_limited")
            st.text_input("文风基调", key="writing_tone")
            st.text_input("主题 (逗号分隔)", key="themes")
            st.text_input("当前章节", key="chapter_title")
            st.text_input("当前场景", key="scene_title")

        st.subheader("✍️ 续写设置")
        languages = list(LANGUAGE_NAMES)
        language = st.selectbox(
            "写作语言", languages,
            index=languages.index(generation.get("language", "en")) if generation.get("language", "en") in languages else 0,
            format_func=lambda k: LANGUAGE_NAMES[k],
        )
        modes = list(CONTINUATION_MODES)
        mode = st.selectbox("续写模式", modes, index=modes.index(generation.get("continuation_mode", "general")))
        lengths = list(CONTINUATION_LENGTHS)
        length = st.selectbox("续写长度", lengths, index=lengths.index(generation.get("continuation_length", "medium")))
        sizes = list(CONTEXT_SIZES)
        context_size = st.selectbox("上下文范围", sizes, index=sizes.index(generation.get("context_size", "medium")))
        instruction = st.text_input("额外指令 (可选)")
        auto_scan = st.checkbox("续写后自动扫描设定集", value=bool(generation.get("auto_scan_after_continue", False)))
        clear_codex = st.checkbox(
            "扫描前清空设定集", value=bool(generation.get("clear_codex_before_scan", False)),
            help="打开后每次扫描都以扫描结果整体替换设定集",
        )

        action_options = [None] + list(ContinuationAction)
        st.session_state.explicit_action = st.selectbox(
            "续写动作", action_options,
            format_func=lambda a: "🤖 自动判定" if a is None else a.value,
        )

        with st.expander(f"📚 设定集 ({len(st.session_state.codex)})"):
            for entry in st.session_state.codex:
                st.markdown(f"**{entry.name}** · {entry.category}")
                if entry.description:
                    st.caption(entry.description)
            with st.form("add_codex_entry", clear_on_submit=True):
                name = st.text_input("名称")
                category = st.text_input("类别", value="Character")
                description = st.text_area("描述", height=68)
                if st.form_submit_button("添加") and name:
                    st.session_state.codex.append(CodexEntry(name=name, category=category, description=description))
                    st.rerun()

    overrides = {
        "language": language,
        "continuation_mode": mode,
        "continuation_length": length,
        "context_size": context_size,
        "auto_scan_after_continue": auto_scan,
        "clear_codex_before_scan": clear_codex,
    }
    if instruction:
        overrides["instruction"] = instruction
    return overrides


def main():
    full_config = config_manager.load_config()
    init_session_state()
    overrides = render_sidebar(full_config)
    render_editor_view(full_config, overrides, run_step_with_spinner, set_pages)


if __name__ == "__main__":
    main()
