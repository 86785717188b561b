"""
续写编排服务 (Continuation Orchestrator)
节奏评估 -> 动作判定 -> 结构化续写 -> 响应解析，失败时退化为纯文本续写。
"""
import logging
from typing import List, Optional

from config.loader import load_config
from core.exceptions import ConfigurationError, ResponseParseError
from core.pacing import classify, progress_from_structure
from core.response_parser import ResponseParser
from core.schemas import (
    CodexEntry, ContinuationAction, ContinuationConfig, ContinuationResult, StructureContext
)
from chains.continuation import (
    build_continuation_prompts, build_opening_prompts, build_plain_prompts, build_rewrite_prompts,
    continuation_options, opening_options, plain_options, select_discipline
)
from infra.llm.backend import LLMBackend
from services.action_decider import ActionDecider

logger = logging.getLogger(__name__)


def _default_fallback_backend() -> LLMBackend:
    steps = load_config().get("steps") or {}
    return LLMBackend("fallback_writer" if steps.get("fallback_writer") else "continuation_writer")


class ContinuationService:
    """
    续写编排器。所有协作者均可注入，默认从 config.yaml 的 steps 解析：
    continuation_writer 负责正文，fallback_writer (缺省同 continuation_writer) 负责纯文本兜底。
    """

    def __init__(
        self,
        content_backend=None,
        decider: ActionDecider = None,
        parser: ResponseParser = None,
        fallback_backend=None,
        discipline=None,
        discipline_setting: Optional[str] = None,
    ):
        self.content_backend = content_backend or LLMBackend("continuation_writer")
        if fallback_backend is None:
            fallback_backend = self.content_backend if content_backend is not None else _default_fallback_backend()
        self.fallback_backend = fallback_backend
        self.decider = decider or ActionDecider()
        self.parser = parser or ResponseParser()
        self.discipline_setting = discipline_setting
        self._discipline = discipline

    @property
    def discipline(self):
        if self._discipline is None:
            capabilities = getattr(self.content_backend, "capabilities", None) or {}
            self._discipline = select_discipline(self.discipline_setting, capabilities)
            logger.info(f"续写响应约束策略: {self._discipline.name}")
        return self._discipline

    def continue_story(
        self,
        current_text: str,
        codex: Optional[List[CodexEntry]],
        structure_context: Optional[StructureContext],
        config: Optional[ContinuationConfig] = None,
    ) -> ContinuationResult:
        """
        生成一段续写并给出结构化动作。

        Args:
            current_text (str): 续写前文 (目标页及之前所有页)。
            codex (List[CodexEntry]): 设定集，仅作为上下文。
            structure_context (StructureContext): 故事结构快照。
            config (ContinuationConfig): 续写配置。

        Returns:
            ContinuationResult: action 恒为已判定的动作；兜底路径下为 continue 且无标题。

        Raises:
            ConfigurationError: 配置错误，不走兜底。
            LLMOperationError: 兜底续写同样失败时抛出。
        """
        config = config or ContinuationConfig()
        codex = codex or []

        report = classify(progress_from_structure(structure_context or StructureContext()), config.pacing_targets)
        logger.info(f"节奏评估: {report.severity.value} (强制: {report.mandatory})")

        action = self.decider.decide(
            config.explicit_action, structure_context, current_text,
            report=report, codex=codex, config=config,
        )

        try:
            return self._generate_structured(current_text, codex, structure_context, report, action, config)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning(f"结构化续写失败，退化为纯文本续写: {e}", exc_info=True)

        return self._generate_plain(current_text, codex, structure_context, config)

    def _generate_structured(self, current_text, codex, structure, report, action, config) -> ContinuationResult:
        system_prompt, user_prompt = build_continuation_prompts(
            current_text, codex, structure, report, action, config
        )
        system_prompt, options = self.discipline.prepare(system_prompt, continuation_options(config))

        raw = self.content_backend.invoke_model(system_prompt, user_prompt, options)
        result = self.parser.parse(raw)

        if result.action != action:
            logger.warning(f"模型返回的 action '{result.action.value}' 与判定结果 '{action.value}' 不一致，以判定结果为准。")
            result.action = action
        return result

    def _generate_plain(self, current_text, codex, structure, config) -> ContinuationResult:
        system_prompt, user_prompt = build_plain_prompts(current_text, codex, structure, config)
        raw = self.fallback_backend.invoke_model(system_prompt, user_prompt, plain_options(config))

        content = (raw or "").lstrip("\r\n").rstrip()
        if not content.strip():
            logger.error("纯文本兜底续写返回了空内容。")
            raise ResponseParseError("纯文本兜底续写返回了空内容。")
        return ContinuationResult(action=ContinuationAction.CONTINUE, content=content)

    def rewrite_selection(
        self,
        page_text: str,
        selection: str,
        codex: Optional[List[CodexEntry]],
        structure_context: Optional[StructureContext],
        config: Optional[ContinuationConfig] = None,
    ) -> str:
        """改写选中文本，返回用于替换选区的新文本 (不含首尾空白)。"""
        config = config or ContinuationConfig()
        system_prompt, user_prompt = build_rewrite_prompts(
            page_text, selection, codex or [], structure_context, config
        )
        raw = self.content_backend.invoke_model(system_prompt, user_prompt, plain_options(config))
        rewritten = (raw or "").strip()
        if not rewritten:
            logger.error("选中文本改写返回了空内容。")
            raise ResponseParseError("选中文本改写返回了空内容。")
        return rewritten

    def generate_opening(
        self,
        structure_context: Optional[StructureContext],
        config: Optional[ContinuationConfig] = None,
    ) -> str:
        """为新作品生成开篇场景正文"""
        config = config or ContinuationConfig()
        system_prompt, user_prompt = build_opening_prompts(structure_context, config)
        raw = self.content_backend.invoke_model(system_prompt, user_prompt, opening_options(config))
        content = (raw or "").lstrip("\r\n").rstrip()
        if not content.strip():
            logger.error("开篇生成返回了空内容。")
            raise ResponseParseError("开篇生成返回了空内容。")
        logger.info(f"开篇生成完成: {len(content)} 字符")
        return content
