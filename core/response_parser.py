"""
续写响应解析器 (Response Parser)
将模型原始输出 (理想情况下为 JSON，实际常被截断或包裹在 Markdown 中) 转换为 ContinuationResult。

恢复阶梯 (前一阶段失败才进入下一阶段)：
1. 去除首尾代码围栏后直接解码；
2. 在清理后的文本中寻找第一个可解码的平衡 [...] / {...} 片段；
3. 字段级正则提取 content / action / title，兼容截断输出；
4. 没有 content 字段且文本不像 JSON 时，整段文本视为正文；
5. 全部失败时抛出 ResponseParseError，绝不编造内容。
"""
import re
import json
import logging
from typing import Any, Iterator, Optional

from core.exceptions import ResponseParseError
from core.schemas import ContinuationAction, ContinuationResult

logger = logging.getLogger(__name__)

_DECODER = json.JSONDecoder(strict=False)

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL)
_FENCE_OPEN_RE = re.compile(r"^```(?:[\w+-]*[ \t]*\r?\n|(?:json)?[ \t]*)", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\s*```$")

# 捕获到下一个未转义引号为止；被截断时捕获到文本末尾
_CONTENT_FIELD_RE = re.compile(r'"content"\s*:\s*"((?:[^"\\]|\\.)*)', re.DOTALL)
_TITLE_FIELD_RE = re.compile(r'"title"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)
_ACTION_FIELD_RE = re.compile(r'"action"\s*:\s*"([^"]+)"')


def remove_think_tags(raw_text: str) -> str:
    """移除推理模型输出的 <think></think> 段落，避免污染结果。"""
    if not raw_text:
        return raw_text
    return _THINK_RE.sub("", raw_text)


def strip_code_fence(text: str) -> str:
    """
    去除一层首尾 ``` 代码围栏 (可带语言标记)。
    没有围栏时原样返回，保留正文首段缩进。
    """
    if not text:
        return ""
    stripped = text.strip()
    if stripped.startswith("```"):
        return _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", stripped, count=1))
    if stripped.endswith("```"):
        return _FENCE_CLOSE_RE.sub("", text.rstrip())
    return text


def _decode(text: str) -> Any:
    return _DECODER.decode(text.strip())


def _match_close(text: str, start: int) -> Optional[int]:
    """从 start 处的开括号出发，返回与之平衡的闭括号下标 (忽略字符串内的括号)。"""
    stack = []
    in_string = False
    escape = False
    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escape:
                escape = False
            elif char == "\\":
                escape = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]":
            if not stack or stack[-1] != char:
                return None
            stack.pop()
            if not stack:
                return i
    return None


def iter_balanced_spans(text: str) -> Iterator[str]:
    """按出现顺序产出所有平衡的 [...] / {...} 片段。"""
    for start, char in enumerate(text):
        if char in "{[":
            end = _match_close(text, start)
            if end is not None:
                yield text[start:end + 1]


def extract_json_value(raw_text: str) -> Any:
    """
    执行阶梯的前两个阶段，返回解码后的任意 JSON 值；失败返回 None。
    供设定集实体提取等只需要结构化数据的场景复用。
    """
    cleaned = strip_code_fence(remove_think_tags(raw_text or ""))
    if not cleaned:
        return None
    try:
        return _decode(cleaned)
    except ValueError:
        pass
    for span in iter_balanced_spans(cleaned):
        try:
            return _decode(span)
        except ValueError:
            continue
    return None


def parse_action_token(text: Optional[str]) -> Optional[ContinuationAction]:
    """严格匹配单个动作令牌 (去空白、转小写后完全相等)。"""
    if not text:
        return None
    return ContinuationAction.from_token(text.strip().lower())


def _clean_optional(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _result_from_value(value: Any) -> Optional[ContinuationResult]:
    """仅接受带非空字符串 content 的对象；数组取第一个对象。"""
    if isinstance(value, list):
        value = next((item for item in value if isinstance(item, dict)), None)
    if not isinstance(value, dict):
        return None
    content = value.get("content")
    if not isinstance(content, str) or not content.strip():
        return None

    raw_action = value.get("action")
    action = ContinuationAction.from_token(raw_action if isinstance(raw_action, str) else None)
    if action is None:
        if raw_action is not None:
            logger.warning(f"响应中的 action 无效: {raw_action!r}，按 'continue' 处理。")
        action = ContinuationAction.CONTINUE

    return ContinuationResult(
        action=action,
        content=content,
        title=_clean_optional(value.get("title")),
        summary=_clean_optional(value.get("summary")),
    )


def _unescape_fragment(fragment: str) -> str:
    """先把片段包上引号严格解码；失败 (如截断在转义序列中间) 时手工顺序替换。"""
    try:
        return _DECODER.decode(f'"{fragment}"')
    except ValueError:
        return (
            fragment
            .replace("\\n", "\n")
            .replace('\\"', '"')
            .replace("\\\\", "\\")
            .replace("\\t", "\t")
        )


def _recover_fields(cleaned: str) -> Optional[ContinuationResult]:
    content_match = _CONTENT_FIELD_RE.search(cleaned)
    if not content_match:
        return None
    content = _unescape_fragment(content_match.group(1))

    action_match = _ACTION_FIELD_RE.search(cleaned)
    action = ContinuationAction.from_token(action_match.group(1)) if action_match else None

    title_match = _TITLE_FIELD_RE.search(cleaned)
    title = _clean_optional(_unescape_fragment(title_match.group(1))) if title_match else None

    return ContinuationResult(
        action=action or ContinuationAction.CONTINUE,
        content=content,
        title=title,
    )


def _literal_content(text: str) -> str:
    # 保留首段缩进，只去掉开头空行与末尾空白
    return text.lstrip("\r\n").rstrip()


class ResponseParser:
    """续写响应解析器，实现上述五级恢复阶梯。"""

    def parse(self, raw: str) -> ContinuationResult:
        text = strip_code_fence(remove_think_tags(raw or ""))
        if not text.strip():
            raise ResponseParseError("模型返回了空响应，无法解析出正文。")

        # 阶段 1: 直接解码
        try:
            result = _result_from_value(_decode(text))
            if result:
                return result
        except ValueError:
            pass

        # 阶段 2: 平衡片段
        for span in iter_balanced_spans(text):
            try:
                result = _result_from_value(_decode(span))
            except ValueError:
                continue
            if result:
                logger.info("响应包含多余文本，已从中提取 JSON 片段。")
                return result

        # 阶段 3: 字段级提取
        logger.warning("JSON 解析失败，尝试字段级正则恢复。")
        result = _recover_fields(text)
        if result and result.content.strip():
            return result

        # 阶段 4: 纯文本
        if result is None and not text.lstrip().startswith("{"):
            logger.info("响应不是结构化数据，整段作为续写正文。")
            return ContinuationResult(action=ContinuationAction.CONTINUE, content=_literal_content(text))

        preview = text[:200] + "..." if len(text) > 200 else text
        logger.error(f"续写响应解析失败，所有恢复策略均无效。响应预览: {preview}")
        raise ResponseParseError("无法从模型响应中解析出续写内容。")


def parse_continuation(raw: str) -> ContinuationResult:
    """模块级便捷入口"""
    return ResponseParser().parse(raw)
