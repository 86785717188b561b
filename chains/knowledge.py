"""
设定集提取链 (Codex Extraction)
从新生成的正文中识别尚未收录的人物、地点、物品等实体。
"""
from typing import List, Tuple

from core.schemas import CodexCategory, GenerationOptions
from chains.base import get_language_instruction
from prompts import get_raw_prompt, render_prompt

EXTRACTION_MAX_TOKENS = 4096
EXTRACTION_TEMPERATURE = 1.0

CODEX_ENTRY_SCHEMA = {
    "title": "CodexEntries",
    "description": "New codex entries found in the analyzed text.",
    "type": "object",
    "properties": {
        "entries": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "category": {"type": "string", "enum": [c.value for c in CodexCategory]},
                    "description": {"type": "string"},
                    "tags": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["name", "category", "description", "tags"],
            },
        }
    },
    "required": ["entries"],
}


def build_extraction_prompts(text: str, existing_names: List[str], language: str) -> Tuple[str, str]:
    system_prompt = render_prompt(
        "codex_extraction_system",
        language_instruction=get_language_instruction(language),
        existing_names=", ".join(existing_names),
    )
    user_prompt = render_prompt("codex_extraction_user", compact=False, text=text)
    return system_prompt, user_prompt


def extraction_json_suffix() -> str:
    return get_raw_prompt("codex_extraction_json_suffix")


def extraction_options(structured: bool, timeout: float = None) -> GenerationOptions:
    """structured 为 True 时走 Schema 约束，否则只请求 JSON 模式"""
    return GenerationOptions(
        max_output_tokens=EXTRACTION_MAX_TOKENS,
        temperature=EXTRACTION_TEMPERATURE,
        response_format="json",
        schema=CODEX_ENTRY_SCHEMA if structured else None,
        timeout=timeout,
    )
