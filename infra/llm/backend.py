"""
生成后端适配层
把 invoke_model(system_prompt, user_prompt, options) -> raw_text 映射到 LangChain 聊天模型。
模型构造与调用中提供商抛出的任何异常统一包装为 TransportError；
工厂判定为配置问题的错误 (别名缺失、环境变量未设置、模型类无法导入或实例化) 以 ConfigurationError 原样抛出。
"""
import json
import logging
from langchain_core.prompts import ChatPromptTemplate
from langchain_core.output_parsers import StrOutputParser

from core.exceptions import ConfigurationError, TransportError
from core.schemas import GenerationOptions
from infra.llm.factory import get_llm, get_model_capabilities

logger = logging.getLogger(__name__)

_MESSAGES_PROMPT = ChatPromptTemplate.from_messages([
    ("system", "{system_prompt}"),
    ("human", "{user_prompt}"),
])


class LLMBackend:
    """绑定到某个步骤别名 (config.yaml 的 steps) 的生成后端"""

    def __init__(self, alias: str, llm_factory=None, capabilities: dict = None):
        self.alias = alias
        self._llm_factory = llm_factory or get_llm
        self._capabilities = capabilities

    @property
    def capabilities(self) -> dict:
        if self._capabilities is None:
            self._capabilities = get_model_capabilities(self.alias)
        return self._capabilities

    def invoke_model(self, system_prompt: str, user_prompt: str, options: GenerationOptions = None) -> str:
        options = options or GenerationOptions()
        inputs = {"system_prompt": system_prompt, "user_prompt": user_prompt}

        try:
            llm = self._llm_factory(
                self.alias,
                temperature=options.temperature,
                max_output_tokens=options.max_output_tokens,
                timeout=options.timeout,
            )
            if options.schema is not None:
                chain = _MESSAGES_PROMPT | llm.with_structured_output(options.schema)
                result = chain.invoke(inputs)
                if result is None:
                    logger.warning(f"[{self.alias}] 结构化输出为空。")
                    return ""
                if isinstance(result, str):
                    return result
                return json.dumps(result, ensure_ascii=False)

            if options.response_format == "json" and self.capabilities.get("json_mode"):
                llm = llm.bind(response_format={"type": "json_object"})
            chain = _MESSAGES_PROMPT | llm | StrOutputParser()
            return chain.invoke(inputs)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"[{self.alias}] 调用生成后端失败: {e}", exc_info=True)
            raise TransportError(f"调用生成后端 '{self.alias}' 失败: {e}") from e
