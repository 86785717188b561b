"""
Prompt Manager
动态加载并管理 config/prompts.yaml 中的所有 Prompt 模板。
支持运行时热重载。
"""
import re
import yaml
import os
import logging
from langchain_core.prompts import PromptTemplate

from core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

PROMPTS_PATH = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "config", "prompts.yaml"
)

_BLANK_LINES_RE = re.compile(r"\n[ \t]*\n(?:[ \t]*\n)+")


# --- 热重载缓存层 ---
class PromptCache:
    def __init__(self, path: str = PROMPTS_PATH):
        self.path = path
        self._cache = {}
        self._last_modified_time = 0

    def get_prompts(self) -> dict:
        """获取 Prompts，如果文件被修改则重新加载。"""
        try:
            current_mtime = os.path.getmtime(self.path)
            if current_mtime > self._last_modified_time:
                logger.info("检测到 prompts.yaml 文件变更，正在热重载...")
                with open(self.path, 'r', encoding='utf-8') as f:
                    self._cache = yaml.safe_load(f) or {}
                self._last_modified_time = current_mtime
                logger.info("热重载完成！")
        except FileNotFoundError:
            logger.error(f"未找到 Prompts 文件: {self.path}")
            self._cache = {}
        except yaml.YAMLError as e:
            # 保留旧缓存，避免编辑中的文件导致续写中断
            logger.error(f"加载或重载 Prompts 失败: {e}")

        return self._cache


_prompt_cache = PromptCache()


def get_prompt_template(prompt_key: str) -> PromptTemplate:
    """
    根据 Key 获取一个 LangChain PromptTemplate 对象 (支持热重载)。

    Args:
        prompt_key (str): 在 prompts.yaml 中定义的键。

    Returns:
        PromptTemplate: LangChain 模板对象。
    """
    prompts = _prompt_cache.get_prompts()
    template_str = prompts.get(prompt_key)

    if not template_str:
        raise ConfigurationError(f"Prompt key '{prompt_key}' not found in {_prompt_cache.path}")

    return PromptTemplate.from_template(template_str)


def render_prompt(prompt_key: str, compact: bool = True, **variables) -> str:
    """
    渲染模板。compact 为 True 时压缩空变量留下的多余空行；
    包含正文原文的模板应传 compact=False，避免改动用户文本。
    """
    text = get_prompt_template(prompt_key).format(**variables)
    if compact:
        text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


def get_raw_prompt(prompt_key: str) -> str:
    """取原始字符串 (不做模板变量替换)，用于系统提示词后缀。"""
    value = _prompt_cache.get_prompts().get(prompt_key)
    if not value:
        raise ConfigurationError(f"Prompt key '{prompt_key}' not found in {_prompt_cache.path}")
    return value


def force_reload_prompts():
    """手动强制重载 Prompts"""
    _prompt_cache._last_modified_time = 0
    logger.info("已请求手动重载 Prompts。")
