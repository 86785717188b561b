"""
文本测量 (Text Metrics)
给定文本与排版参数，计算渲染高度 (与页面容量同单位)。
模拟 `white-space: pre-wrap; word-wrap: break-word; box-sizing: border-box` 的换行行为，
段首缩进等空白字符全部计入宽度，不做折叠。
"""
import re
import logging
import unicodedata
from functools import lru_cache

from core.exceptions import LayoutError
from core.schemas import LayoutProfile

logger = logging.getLogger(__name__)

# 可单独断行的 CJK 字符：谚文字母、CJK 标点/部首、假名、注音、扩展 A、统一汉字、谚文音节、兼容汉字、全角形式
_CJK = (
    "\u1100-\u11ff\u2e80-\u303f\u3040-\u30ff\u3100-\u31ff"
    "\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af\uf900-\ufaff\uff00-\uffef"
)
_SPACE = " \t\u3000"

# 空白串 / 单个 CJK 字符 / 其他连续非空白字符
_TOKEN_RE = re.compile(f"[{_SPACE}]+|[{_CJK}]|[^{_SPACE}{_CJK}]+")

TAB_SIZE = 8


class TextMetrics:
    """
    测量器基类。子类只需实现 `text_width`，折行与高度计算在此统一完成，
    保证同一 (text, profile) 输入得到确定的高度。
    """

    def text_width(self, segment: str, profile: LayoutProfile) -> float:
        raise NotImplementedError

    def measure(self, text: str, profile: LayoutProfile) -> float:
        lines = sum(self._count_visual_lines(line, profile) for line in text.split("\n"))
        return 2 * profile.padding + lines * profile.line_height_px

    def _count_visual_lines(self, hard_line: str, profile: LayoutProfile) -> int:
        """贪心折行，返回一个硬换行段落占用的可视行数 (空行也占一行)。"""
        max_width = profile.content_width
        if max_width <= 0:
            raise LayoutError(f"内容宽度必须为正数，当前为 {max_width}")

        lines = 1
        used = 0.0
        for token in _TOKEN_RE.findall(hard_line.replace("\t", " " * TAB_SIZE)):
            width = self.text_width(token, profile)
            if token.isspace():
                # pre-wrap 下行尾空白悬挂，不触发换行
                used += width
                continue
            if used + width <= max_width:
                used += width
                continue
            if used > 0:
                lines += 1
                used = 0.0
            if width <= max_width:
                used = width
                continue
            # 单词本身超过整行宽度，逐字符断开
            for char in token:
                char_width = self.text_width(char, profile)
                if used > 0 and used + char_width > max_width:
                    lines += 1
                    used = 0.0
                used += char_width
        return lines


class CellTextMetrics(TextMetrics):
    """基于字符宽度表的近似测量：全角字符 1em，组合字符 0，其余 average_char_ratio em。"""

    def __init__(self, average_char_ratio: float = 0.5):
        if average_char_ratio <= 0:
            raise LayoutError("average_char_ratio 必须为正数")
        self.average_char_ratio = average_char_ratio

    def text_width(self, segment: str, profile: LayoutProfile) -> float:
        return _cell_units(segment, self.average_char_ratio) * profile.font_size


@lru_cache(maxsize=4096)
def _cell_units(segment: str, ratio: float) -> float:
    units = 0.0
    for char in segment:
        if unicodedata.combining(char):
            continue
        if unicodedata.east_asian_width(char) in ("W", "F"):
            units += 1.0
        else:
            units += ratio
    return units


class FontTextMetrics(TextMetrics):
    """
    使用 Pillow 读取 TrueType 字体，以真实字形步进宽度测量。
    字体加载失败属于配置/程序错误，直接抛出 LayoutError。
    """

    def __init__(self, font_path: str):
        self.font_path = font_path
        self._fonts = {}

    def _get_font(self, size: float):
        key = int(round(size))
        if key not in self._fonts:
            from PIL import ImageFont
            try:
                self._fonts[key] = ImageFont.truetype(self.font_path, size=key)
            except OSError as e:
                logger.error(f"无法加载字体文件 '{self.font_path}': {e}", exc_info=True)
                raise LayoutError(f"无法加载字体文件 '{self.font_path}': {e}") from e
            logger.info(f"已加载测量字体: {self.font_path} ({key}px)")
        return self._fonts[key]

    def text_width(self, segment: str, profile: LayoutProfile) -> float:
        return float(self._get_font(profile.font_size).getlength(segment))


def get_text_metrics(layout_config: dict = None) -> TextMetrics:
    """
    根据 config.yaml 的 layout 段选择测量后端。

    Args:
        layout_config (dict): 包含 metrics ("cell" | "font")、font_path、average_char_ratio 等键。

    Returns:
        TextMetrics: 测量器实例。
    """
    layout_config = layout_config or {}
    backend = layout_config.get("metrics", "cell")
    if backend == "cell":
        return CellTextMetrics(float(layout_config.get("average_char_ratio", 0.5)))
    if backend == "font":
        font_path = layout_config.get("font_path")
        if not font_path:
            raise LayoutError("layout.metrics 为 'font' 时必须提供 layout.font_path")
        return FontTextMetrics(font_path)
    raise LayoutError(f"未知的文本测量后端: '{backend}'")
