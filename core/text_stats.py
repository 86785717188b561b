"""
文本统计工具：字数统计 (兼容中日韩) 与上下文截取。
"""
import re

_CJK_CHAR_RE = re.compile(r"[\u4e00-\u9fa5]")

CJK_LANGUAGES = ("zh", "ja", "ko")


def count_words(text: str) -> int:
    """每个汉字计一个字，其余按空白分词计数。"""
    if not text:
        return 0
    cjk_count = len(_CJK_CHAR_RE.findall(text))
    non_cjk = _CJK_CHAR_RE.sub(" ", text)
    return cjk_count + len(non_cjk.split())


def tail(text: str, limit: int) -> str:
    """保留文本末尾 limit 个字符"""
    if limit <= 0:
        return ""
    return text[-limit:]


def indent_width(language: str) -> int:
    """段首缩进空格数：中日韩 4 个，其余 2 个"""
    return 4 if language in CJK_LANGUAGES else 2
