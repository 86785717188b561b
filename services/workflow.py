"""
工作流协调中心 (Workflow Facade)
系统的 Facade 层，负责将 UI 请求分发至具体的 Service 处理。
与 UI 框架 (Streamlit) 彻底解耦：输入 EditorContext，输出 EditorResult。
"""
from __future__ import annotations
import logging
from typing import Optional

from config.loader import build_continuation_config, build_layout_profile
from core.exceptions import ConfigurationError, LayoutError, LLMOperationError
from core.pagination import Paginator, context_through, first_paragraph, locate_anchor, join_pages
from core.schemas import ContinuationAction, EditorContext, EditorResult, SceneRequest
from core.text_metrics import get_text_metrics
from chains.base import fallback_chapter_title, fallback_scene_title

from services.continuation_service import ContinuationService
from services.codex_service import CodexService

logger = logging.getLogger(__name__)


def build_paginator(full_config: dict) -> Paginator:
    """按 layout 配置段构造分页器"""
    layout = full_config.get("layout") or {}
    return Paginator(build_layout_profile(full_config), get_text_metrics(layout))


def _restore_focus(pages, anchor: Optional[str]) -> int:
    """重新分页后按内容锚点找回焦点页，找不到时落在最后一页"""
    index = locate_anchor(pages, anchor)
    return index if index is not None else len(pages) - 1


def _continuation_service(full_config: dict, injected: ContinuationService = None) -> ContinuationService:
    return injected or ContinuationService(
        discipline_setting=(full_config.get("generation") or {}).get("response_discipline")
    )


def _run_continue(context: EditorContext, full_config: dict, overrides: dict,
                  continuation_service: ContinuationService = None) -> EditorResult:
    paginator = build_paginator(full_config)
    pages = context.pages or [""]
    target = context.target_index
    anchor = first_paragraph(pages[target]) if context.focused_page_index is not None else None

    if context.explicit_action is not None:
        overrides = dict(overrides, explicit_action=context.explicit_action)
    config = build_continuation_config(full_config, **overrides)

    service = _continuation_service(full_config, continuation_service)
    result = service.continue_story(context_through(pages, target), context.codex, context.structure, config)

    output = EditorResult(continuation=result)
    if result.action == ContinuationAction.CONTINUE:
        new_pages = paginator.append_to_page(pages, target, result.content)
        output.pages = new_pages
        output.focused_page_index = _restore_focus(new_pages, anchor)
    else:
        structure = context.structure
        if result.action == ContinuationAction.NEW_SCENE:
            title = result.title or fallback_scene_title(structure.total_scenes_in_chapter + 1, structure.genre)
        else:
            title = result.title or fallback_chapter_title(genre=structure.genre)
        output.pending_scene = SceneRequest(
            kind=result.action, title=title, content=result.content, summary=result.summary
        )
        logger.info(f"续写结果要求新建{'场景' if result.action == ContinuationAction.NEW_SCENE else '章节'}: {title}")

    return output


def _run_repaginate(context: EditorContext, full_config: dict) -> EditorResult:
    paginator = build_paginator(full_config)
    pages = context.pages or [""]
    anchor = None
    if context.focused_page_index is not None:
        anchor = first_paragraph(pages[context.target_index])
    new_pages = paginator.repaginate(pages)
    return EditorResult(pages=new_pages, focused_page_index=_restore_focus(new_pages, anchor))


def _run_rewrite(context: EditorContext, full_config: dict, overrides: dict,
                 continuation_service: ContinuationService = None) -> EditorResult:
    """用改写结果替换焦点页中第一次出现的选中文本，然后重新分页"""
    pages = list(context.pages or [""])
    target = context.target_index
    selection = context.selection or ""
    if not selection.strip():
        raise ValueError("没有选中需要改写的文本。")
    if selection not in pages[target]:
        raise ValueError(f"选中文本不在第 {target + 1} 页中，请重新选择。")

    config = build_continuation_config(full_config, **overrides)
    service = _continuation_service(full_config, continuation_service)
    rewritten = service.rewrite_selection(pages[target], selection, context.codex, context.structure, config)

    pages[target] = pages[target].replace(selection, rewritten, 1)
    anchor = first_paragraph(pages[target])
    new_pages = build_paginator(full_config).repaginate(pages)
    logger.info(f"已改写第 {target + 1} 页中的选中文本 ({len(selection)} -> {len(rewritten)} 字符)")
    return EditorResult(pages=new_pages, focused_page_index=_restore_focus(new_pages, anchor))


def _run_opening(context: EditorContext, full_config: dict, overrides: dict,
                 continuation_service: ContinuationService = None) -> EditorResult:
    """生成开篇场景；只允许在空白场景上执行，避免覆盖已有正文"""
    if join_pages(context.pages).strip():
        raise ValueError("当前场景已有正文，无法生成开篇。")
    config = build_continuation_config(full_config, **overrides)
    service = _continuation_service(full_config, continuation_service)
    content = service.generate_opening(context.structure, config)
    return EditorResult(pages=build_paginator(full_config).paginate(content), focused_page_index=0)


def _run_scan_codex(context: EditorContext, full_config: dict, overrides: dict,
                    codex_service: CodexService = None) -> EditorResult:
    """
    扫描设定集。scan_text 给出时只扫描这段新增正文 (续写应用之后由界面单独触发)，
    否则扫描整个场景。clear_codex_before_scan 打开时以扫描结果整体替换设定集。
    """
    config = build_continuation_config(full_config, **overrides)
    scanner = codex_service or CodexService()
    text = context.scan_text if context.scan_text is not None else join_pages(context.pages)
    existing = [] if config.clear_codex_before_scan else [entry.name for entry in context.codex]
    entries = scanner.scan(
        text,
        existing,
        config.language,
        min_chars=config.scan_min_chars,
        timeout=config.content_timeout,
    )
    return EditorResult(new_codex_entries=entries, codex_replaced=config.clear_codex_before_scan)


STEPS = ("continue", "rewrite", "opening", "repaginate", "scan_codex")


def run_step(step_name: str, context: EditorContext, full_config: dict, overrides: dict = None,
             continuation_service: ContinuationService = None, codex_service: CodexService = None) -> EditorResult:
    """
    业务逻辑统一入口点。

    Args:
        step_name: 步骤名称 ("continue" / "rewrite" / "opening" / "repaginate" / "scan_codex")
        context: EditorContext 对象 (纯 Python 领域模型)
        full_config: 全局配置字典
        overrides: 界面上的临时续写设置 (如 continuation_mode、language)
        continuation_service / codex_service: 可注入的服务实例
    """
    logger.info(f"路由请求: {step_name} (共 {len(context.pages)} 页)")
    overrides = overrides or {}

    try:
        if step_name == "continue":
            return _run_continue(context, full_config, overrides, continuation_service)
        elif step_name == "rewrite":
            return _run_rewrite(context, full_config, overrides, continuation_service)
        elif step_name == "opening":
            return _run_opening(context, full_config, overrides, continuation_service)
        elif step_name == "repaginate":
            return _run_repaginate(context, full_config)
        elif step_name == "scan_codex":
            return _run_scan_codex(context, full_config, overrides, codex_service)
        else:
            raise ValueError(f"未知的步骤名称: {step_name}，可选: {' / '.join(STEPS)}")

    except (ConfigurationError, LayoutError, LLMOperationError):
        logger.error(f"执行 {step_name} 失败", exc_info=True)
        raise
    except Exception as e:
        logger.error(f"执行 {step_name} 失败: {e}", exc_info=True)
        raise LLMOperationError(f"业务执行失败: {e}")
