"""颜色工具函数：把 SVG 颜色写法转换为 Android 颜色字符串。

颜色名、十六进制（含 #RRGGBBAA）与 hsl() 等写法交给 Pillow 的 ImageColor 解析，
rgb()/rgba() 在这里处理，以支持 CSS 的空格分隔与 0~1 的透明度写法。
"""

from __future__ import annotations

import re
from typing import Optional, Tuple

from PIL import ImageColor

from guide_ingest.core.exceptions import ConversionError

RGB_FUNC_RE = re.compile(r"^rgba?\(\s*([^)]*)\)$", re.IGNORECASE)
_SEPARATOR_RE = re.compile(r"\s*[,/]\s*|\s+")

NO_PAINT = {"none", "transparent"}

# (r, g, b, alpha)，alpha 取值 0~1
Rgba = Tuple[int, int, int, float]


def parse_svg_color(value: Optional[str]) -> Optional[Rgba]:
    """将 SVG 颜色解析为 (r, g, b, alpha)；none/transparent 返回 None。

    currentColor 与 inherit 需要上下文，由调用方在此之前处理。
    """

    if value is None:
        return None
    text = value.strip()
    if not text or text.lower() in NO_PAINT:
        return None

    match = RGB_FUNC_RE.match(text)
    if match:
        return _parse_rgb_function(match.group(1), value)

    try:
        channels = ImageColor.getrgb(text)
    except ValueError as exc:
        raise ConversionError(f"无法解析颜色值: {value}") from exc

    alpha = channels[3] / 255 if len(channels) == 4 else 1.0
    return channels[0], channels[1], channels[2], alpha


def to_android_color(rgb: Tuple[int, ...]) -> str:
    """RGB（忽略透明度分量）转换为 #RRGGBB。"""

    r, g, b = rgb[:3]
    return f"#{r:02X}{g:02X}{b:02X}"


def _parse_rgb_function(body: str, original: str) -> Rgba:
    parts = [part for part in _SEPARATOR_RE.split(body.strip()) if part]
    if len(parts) not in (3, 4):
        raise ConversionError(f"无法解析颜色值: {original}")
    r, g, b = (_parse_channel(part, original) for part in parts[:3])
    alpha = _parse_alpha(parts[3], original) if len(parts) == 4 else 1.0
    return r, g, b, alpha


def _parse_channel(part: str, original: str) -> int:
    try:
        if part.endswith("%"):
            number = float(part[:-1]) * 255 / 100
        else:
            number = float(part)
    except ValueError as exc:
        raise ConversionError(f"无法解析颜色值: {original}") from exc
    return int(round(max(0.0, min(number, 255.0))))


def _parse_alpha(part: str, original: str) -> float:
    try:
        number = float(part[:-1]) / 100 if part.endswith("%") else float(part)
    except ValueError as exc:
        raise ConversionError(f"无法解析颜色值: {original}") from exc
    return max(0.0, min(number, 1.0))
