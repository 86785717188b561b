"""
动作判定服务 (Action Decider)
决定本次续写是续写当前场景、开启新场景还是开启新章节。
优先级：用户显式指定 > 后端单令牌分类 > 默认 continue。
"""
import logging
from typing import List, Optional

from core.exceptions import ConfigurationError
from core.pacing import classify, progress_from_structure
from core.response_parser import parse_action_token
from core.schemas import (
    CodexEntry, ContinuationAction, ContinuationConfig, PacingReport, StructureContext
)
from chains.continuation import build_classifier_prompts, classifier_options
from infra.llm.backend import LLMBackend

logger = logging.getLogger(__name__)


class ActionDecider:

    def __init__(self, backend=None):
        self.backend = backend or LLMBackend("action_classifier")

    def decide(
        self,
        explicit_override: Optional[ContinuationAction],
        context: Optional[StructureContext],
        prior_text: str,
        report: Optional[PacingReport] = None,
        codex: Optional[List[CodexEntry]] = None,
        config: Optional[ContinuationConfig] = None,
    ) -> ContinuationAction:
        """
        判定续写动作。

        Args:
            explicit_override: 用户显式指定的动作，存在时直接返回，不调用后端。
            context: 故事结构快照。
            prior_text: 目标页及之前的正文。
            report: 节奏评估结果，缺省时按 context 与 config 现算。

        Returns:
            ContinuationAction: 分类结果；后端失败或输出无法识别时为 CONTINUE。
        """
        if explicit_override is not None:
            logger.info(f"使用显式指定的续写动作: {explicit_override.value}")
            return explicit_override

        config = config or ContinuationConfig()
        context = context or StructureContext()
        if report is None:
            report = classify(progress_from_structure(context), config.pacing_targets)

        system_prompt, user_prompt = build_classifier_prompts(prior_text, codex or [], context, report, config)

        try:
            raw = self.backend.invoke_model(system_prompt, user_prompt, classifier_options(config))
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"动作判定失败，回退为 'continue': {e}", exc_info=True)
            return ContinuationAction.CONTINUE

        action = parse_action_token(raw)
        if action is None:
            logger.warning(f"动作判定输出无法识别: {raw!r}，回退为 'continue'。")
            return ContinuationAction.CONTINUE

        logger.info(f"动作判定结果: {action.value} (节奏: {report.severity.value})")
        return action
