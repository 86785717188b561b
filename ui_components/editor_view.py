"""
分页编辑器视图 (Editor View)
逐页渲染场景正文；输入只替换单页，重新分页在 AI 插入或手动触发时进行。
"""
import streamlit as st
from core.pagination import add_page, edit_page, join_pages
from core.schemas import ContinuationAction
from core.text_stats import count_words
from services.workflow import build_paginator


def _on_page_edit(index: int, widget_key: str):
    st.session_state.pages = edit_page(st.session_state.pages, index, st.session_state[widget_key])


def _apply_pending_scene(full_config, set_pages_func):
    """把待新建的场景/章节作为当前场景打开"""
    pending = st.session_state.pending_scene
    if pending.kind == ContinuationAction.NEW_CHAPTER:
        st.session_state.chapter_title = pending.title
        st.session_state.scene_title = "Opening"
        st.session_state.scene_index = 0
        st.session_state.total_scenes_in_chapter = 1
    else:
        st.session_state.scene_title = pending.title
        st.session_state.scene_index += 1
        st.session_state.total_scenes_in_chapter += 1
    st.session_state.previous_scene_summary = pending.summary or ""
    set_pages_func(build_paginator(full_config).paginate(pending.content))
    st.session_state.pending_scene = None


def _render_opening_and_rewrite(pages, busy, full_config, overrides, run_step_with_spinner_func):
    """空白场景显示开篇生成；否则提供焦点页选中文本改写"""
    if not join_pages(pages).strip():
        if st.button("🪄 生成开篇", disabled=busy):
            if run_step_with_spinner_func("opening", "正在生成开篇...", full_config, overrides) is not None:
                st.rerun()
        return

    with st.expander("🔁 改写选中文本"):
        st.caption("粘贴焦点页 (未选择时为末页) 中需要改写的原文片段。")
        selection = st.text_area("原文片段", key="rewrite_selection", height=100)
        if st.button("改写", disabled=busy or not selection.strip()):
            result = run_step_with_spinner_func(
                "rewrite", "正在改写...", full_config, overrides, selection=selection
            )
            if result is not None:
                st.rerun()


def render_editor_view(full_config, overrides, run_step_with_spinner_func, set_pages_func):
    """
    渲染分页编辑器。

    Args:
        full_config (dict): 全局合并配置。
        overrides (dict): 侧边栏给出的续写临时参数。
        run_step_with_spinner_func (callable): 调用工作流的 UI 包装器。
        set_pages_func (callable): 以新页面列表替换当前场景。
    """
    pages = st.session_state.pages
    st.header(f"{st.session_state.chapter_title} · {st.session_state.scene_title}")
    st.caption(f"{count_words(join_pages(pages))} 字 · {len(pages)} 页")

    # 1. 工具栏
    c1, c2, c3, c4 = st.columns([2, 1, 1, 2])
    busy = st.session_state.is_generating
    if c1.button("✨ AI 续写", type="primary", disabled=busy, use_container_width=True):
        result = run_step_with_spinner_func("continue", "正在续写...", full_config, overrides)
        if result is not None:
            # 正文已写回会话状态，扫描失败也不影响续写结果
            if overrides.get("auto_scan_after_continue") and result.continuation is not None:
                run_step_with_spinner_func(
                    "scan_codex", "正在扫描设定集...", full_config, overrides,
                    scan_text=result.continuation.content,
                )
            st.rerun()
    if c2.button("📐 重新分页", disabled=busy, use_container_width=True):
        if run_step_with_spinner_func("repaginate", "正在重新分页...", full_config, overrides) is not None:
            st.rerun()
    if c3.button("➕ 新增页", disabled=busy, use_container_width=True):
        set_pages_func(add_page(pages), len(pages))
        st.rerun()
    page_options = [None] + list(range(len(pages)))
    focused = st.session_state.focused_page_index
    st.session_state.focused_page_index = c4.selectbox(
        "续写位置",
        page_options,
        index=page_options.index(focused) if focused in page_options else 0,
        format_func=lambda i: "末页" if i is None else f"第 {i + 1} 页",
        key=f"focus_{st.session_state.pages_version}",
    )

    _render_opening_and_rewrite(pages, busy, full_config, overrides, run_step_with_spinner_func)

    # 2. 待确认的新场景 / 新章节
    pending = st.session_state.pending_scene
    if pending is not None:
        label = "新章节" if pending.kind == ContinuationAction.NEW_CHAPTER else "新场景"
        with st.container(border=True):
            st.subheader(f"🆕 {label}: {pending.title}")
            if pending.summary:
                st.caption(pending.summary)
            st.text(pending.content)
            b1, b2 = st.columns(2)
            if b1.button(f"打开为{label}", type="primary"):
                _apply_pending_scene(full_config, set_pages_func)
                st.rerun()
            if b2.button("丢弃"):
                st.session_state.pending_scene = None
                st.rerun()

    # 3. 分页正文
    version = st.session_state.pages_version
    for i, page in enumerate(pages):
        widget_key = f"page_{version}_{i}"
        st.text_area(
            f"第 {i + 1} 页",
            value=page,
            key=widget_key,
            height=600,
            on_change=_on_page_edit,
            args=(i, widget_key),
        )
