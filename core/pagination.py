"""
分页器 (Paginator)
以渲染高度为约束，将场景全文按段落贪心装箱为页面列表。
页面只是派生视图：任何时候写回场景的都是 "\\n".join(pages)。
"""
import logging
from typing import List, Optional

from core.schemas import LayoutProfile
from core.text_metrics import TextMetrics, CellTextMetrics

logger = logging.getLogger(__name__)

PARAGRAPH_SEPARATOR = "\n"


class Paginator:
    """
    绑定一套排版参数与测量器的分页器。
    所有方法都是纯函数：不修改传入的页面列表，总是返回新列表。
    """

    def __init__(self, profile: LayoutProfile = None, metrics: TextMetrics = None):
        self.profile = profile or LayoutProfile()
        self.metrics = metrics or CellTextMetrics()

    def _fits(self, text: str) -> bool:
        return self.metrics.measure(text, self.profile) <= self.profile.capacity_height

    def paginate(self, full_text: str) -> List[str]:
        """
        将全文切分为页面。

        单个段落超出容量时独占一页 (允许溢出)，不会无限拆分。
        空文本返回一个空页面，保证编辑器始终有可编辑区域。
        """
        if not full_text:
            return [""]

        pages: List[str] = []
        accumulator: List[str] = []

        for paragraph in full_text.split(PARAGRAPH_SEPARATOR):
            tentative = PARAGRAPH_SEPARATOR.join(accumulator + [paragraph])
            if self._fits(tentative):
                accumulator.append(paragraph)
                continue

            if accumulator:
                pages.append(PARAGRAPH_SEPARATOR.join(accumulator))
                accumulator = []
                if self._fits(paragraph):
                    accumulator.append(paragraph)
                    continue

            # 单段超出整页容量
            pages.append(paragraph)

        if accumulator:
            pages.append(PARAGRAPH_SEPARATOR.join(accumulator))

        logger.debug(f"分页完成: {len(full_text)} 字符 -> {len(pages)} 页")
        return pages

    def repaginate(self, pages: List[str]) -> List[str]:
        """丢弃原有分页边界，基于合并后的全文重新分页。"""
        return self.paginate(join_pages(pages))

    def append_to_page(self, pages: List[str], index: int, content: str) -> List[str]:
        """
        将生成内容追加到目标页末尾，随后整体重新分页
        (追加内容可能改变其后所有页面的边界)。
        """
        updated = list(pages) if pages else [""]
        current = updated[index]

        if not current.strip():
            separator = ""
        elif current.endswith("\n\n"):
            separator = ""
        elif current.endswith("\n"):
            separator = "\n"
        else:
            separator = "\n\n"

        updated[index] = current + separator + content
        return self.repaginate(updated)

    def page_count(self, full_text: str) -> int:
        return len(self.paginate(full_text))


def join_pages(pages: List[str]) -> str:
    """页面合并为场景全文"""
    return PARAGRAPH_SEPARATOR.join(pages)


def edit_page(pages: List[str], index: int, new_text: str) -> List[str]:
    """
    替换单页文本，不触发重新分页 (用于实时输入)。
    调用方负责在自然边界 (如 AI 插入后) 调用 repaginate。
    """
    if not -len(pages) <= index < len(pages):
        raise IndexError(f"页码越界: {index} (共 {len(pages)} 页)")
    updated = list(pages)
    updated[index] = new_text
    return updated


def add_page(pages: List[str]) -> List[str]:
    return list(pages) + [""]


def context_through(pages: List[str], index: int) -> str:
    """目标页及其之前所有页面的文本，作为续写的前文。"""
    return join_pages(pages[:index + 1])


def locate_anchor(pages: List[str], anchor: Optional[str]) -> Optional[int]:
    """返回第一个包含锚点文本的页码，找不到时返回 None。"""
    if not anchor:
        return None
    for i, page in enumerate(pages):
        if anchor in page:
            return i
    return None


def first_paragraph(text: str) -> Optional[str]:
    """取第一个非空白段落，作为重新分页后恢复焦点的内容锚点。"""
    for paragraph in text.split(PARAGRAPH_SEPARATOR):
        if paragraph.strip():
            return paragraph
    return None
