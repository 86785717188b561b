"""
设定集扫描服务 (Codex Service)
续写成功后从新增正文中提取新实体。扫描失败只记录日志，绝不影响已应用的正文。
"""
import re
import uuid
import logging
from typing import List, Optional

from core.response_parser import extract_json_value, strip_code_fence
from core.schemas import CodexCategory, CodexEntry
from chains.knowledge import build_extraction_prompts, extraction_json_suffix, extraction_options
from infra.llm.backend import LLMBackend

logger = logging.getLogger(__name__)

DEFAULT_SCAN_MIN_CHARS = 20

CATEGORY_ALIASES = {
    "character": CodexCategory.CHARACTER, "characters": CodexCategory.CHARACTER, "人物": CodexCategory.CHARACTER,
    "location": CodexCategory.LOCATION, "locations": CodexCategory.LOCATION, "地点": CodexCategory.LOCATION,
    "item": CodexCategory.ITEM, "items": CodexCategory.ITEM, "物品": CodexCategory.ITEM,
    "lore": CodexCategory.LORE, "设定": CodexCategory.LORE,
    "faction": CodexCategory.FACTION, "factions": CodexCategory.FACTION, "组织": CodexCategory.FACTION,
    "system": CodexCategory.SYSTEM, "systems": CodexCategory.SYSTEM, "系统": CodexCategory.SYSTEM,
    "species": CodexCategory.SPECIES, "race": CodexCategory.SPECIES, "races": CodexCategory.SPECIES,
    "种族": CodexCategory.SPECIES,
    "event": CodexCategory.EVENT, "events": CodexCategory.EVENT, "事件": CodexCategory.EVENT,
}

_NAME_RE = re.compile(r'"name"\s*:\s*"([^"]+)"')
_CATEGORY_RE = re.compile(r'"category"\s*:\s*"([^"]+)"')
_DESCRIPTION_RE = re.compile(r'"description"\s*:\s*"((?:[^"\\]|\\.)*)"')
_TAGS_RE = re.compile(r'"tags"\s*:\s*\[(.*?)\]', re.DOTALL)


def normalize_category(raw: Optional[str]) -> str:
    """模型输出的类别 (含中文别名) 归一化为标准类别，无法识别时为 Character"""
    if not raw or not isinstance(raw, str):
        return CodexCategory.CHARACTER.value
    category = CATEGORY_ALIASES.get(raw.strip().lower())
    return (category or CodexCategory.CHARACTER).value


def _parse_tags(raw: str) -> List[str]:
    if not raw:
        return []
    tags = [part.strip().strip('"') for part in raw.split(",")]
    return [t for t in tags if t]


def _regex_entities(text: str) -> List[dict]:
    """JSON 完全无法解析时按字段正则逐个配对"""
    names = _NAME_RE.findall(text)
    categories = _CATEGORY_RE.findall(text)
    descriptions = _DESCRIPTION_RE.findall(text)
    tags = _TAGS_RE.findall(text)
    count = min(len(names), len(categories), len(descriptions))
    return [
        {
            "name": names[i],
            "category": categories[i],
            "description": descriptions[i],
            "tags": _parse_tags(tags[i]) if i < len(tags) else [],
        }
        for i in range(count)
    ]


def _as_item_list(value) -> Optional[list]:
    """数组直接返回；JSON 模式下常见的 {"entries": [...]} 包裹取第一个数组字段"""
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for item in value.values():
            if isinstance(item, list):
                return item
        if "name" in value:
            return [value]
    return None


def parse_entities(raw: str, existing_names: List[str] = None) -> List[CodexEntry]:
    """
    将模型输出解析为设定集条目，跳过已存在的名称与无名条目。
    """
    items = _as_item_list(extract_json_value(raw))
    # 只解出了内层片段 (如 tags 数组) 时同样走正则
    if not any(isinstance(item, dict) for item in items or []):
        recovered = _regex_entities(strip_code_fence(raw or ""))
        if recovered:
            logger.warning(f"设定集扫描结果 JSON 解析失败，已通过正则提取 {len(recovered)} 个条目。")
            items = recovered
        elif items is None:
            logger.warning("设定集扫描结果无法解析，忽略本次结果。")
            items = []

    existing = {name.strip().lower() for name in (existing_names or [])}
    entries = []
    for item in items:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        if not name or name.lower() in existing:
            continue
        existing.add(name.lower())
        tags = item.get("tags") or []
        if isinstance(tags, str):
            tags = _parse_tags(tags)
        entries.append(CodexEntry(
            name=name,
            category=normalize_category(item.get("category")),
            description=str(item.get("description") or "").strip(),
            tags=[str(t) for t in tags],
            id=f"auto_{uuid.uuid4().hex}",
        ))
    return entries


class CodexService:

    def __init__(self, backend=None):
        self.backend = backend or LLMBackend("codex_extractor")

    def scan(
        self,
        text: str,
        existing_names: List[str],
        language: str = "en",
        min_chars: int = DEFAULT_SCAN_MIN_CHARS,
        timeout: float = None,
    ) -> List[CodexEntry]:
        """
        扫描新增正文中的实体。

        文本长度不超过 min_chars 时直接跳过；任何失败都记录日志并返回空列表。
        """
        if not text or len(text) <= min_chars:
            logger.debug(f"新增内容过短 ({len(text or '')} 字符)，跳过设定集扫描。")
            return []

        try:
            system_prompt, user_prompt = build_extraction_prompts(text, existing_names, language)
            structured = bool(self.backend.capabilities.get("structured_output"))
            if not structured:
                system_prompt += extraction_json_suffix()
            raw = self.backend.invoke_model(system_prompt, user_prompt, extraction_options(structured, timeout))
            entries = parse_entities(raw, existing_names)
        except Exception as e:
            logger.error(f"设定集自动扫描失败: {e}", exc_info=True)
            return []

        logger.info(f"设定集扫描完成，新增 {len(entries)} 个条目。")
        return entries
