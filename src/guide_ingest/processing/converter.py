"""SVG 到 Android Vector Drawable XML 的转换实现。"""

from __future__ import annotations

import logging
import math
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Iterator, Optional
from xml.sax.saxutils import escape

from guide_ingest.core.exceptions import ConversionError
from guide_ingest.core.models import DRAWABLE_MIME_TYPE, SourceFile
from guide_ingest.core.scanner import strip_vector_extension
from guide_ingest.utils.colors import Rgba, parse_svg_color, to_android_color

LOGGER = logging.getLogger(__name__)

ANDROID_NS = "http://schemas.android.com/apk/res/android"
DRAWABLE_EXTENSION = ".xml"
INDENT = "    "

VectorConverter = Callable[[SourceFile], Awaitable[SourceFile]]

_LENGTH_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)\s*(px)?\s*$")
_NUMBER_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_TRANSFORM_RE = re.compile(r"(matrix|translate|scale|rotate|skewX|skewY)\s*\(([^)]*)\)")

SKIPPED_ELEMENTS = {
    "defs",
    "title",
    "desc",
    "metadata",
    "style",
    "clipPath",
    "mask",
    "linearGradient",
    "radialGradient",
    "pattern",
    "symbol",
    "filter",
    "text",
    "image",
    "use",
}

STYLE_PROPERTIES = (
    "fill",
    "fill-opacity",
    "fill-rule",
    "stroke",
    "stroke-opacity",
    "stroke-width",
    "stroke-linecap",
    "stroke-linejoin",
    "stroke-miterlimit",
    "opacity",
    "color",
    "display",
    "visibility",
)

LINECAP = {"butt": "butt", "round": "round", "square": "square"}
LINEJOIN = {"miter": "miter", "round": "round", "bevel": "bevel"}


@dataclass(frozen=True, slots=True)
class PaintState:
    """沿元素树向下继承的绘制属性。"""

    fill: str = "black"
    fill_opacity: float = 1.0
    fill_rule: str = "nonzero"
    stroke: str = "none"
    stroke_opacity: float = 1.0
    stroke_width: float = 1.0
    stroke_linecap: str = "butt"
    stroke_linejoin: str = "miter"
    stroke_miterlimit: float = 4.0
    opacity: float = 1.0
    color: str = "black"


def svg_to_vector_drawable(svg_text: str) -> str:
    """将 SVG 文本转换为 Android Vector Drawable XML 文本。

    解析失败或根节点不是 <svg> 时抛出 ConversionError，不产出部分结果。
    """

    try:
        root = ET.fromstring(svg_text)
    except ET.ParseError as exc:
        raise ConversionError(f"SVG 解析失败: {exc}") from exc

    if _local_name(root.tag) != "svg":
        raise ConversionError(f"根节点不是 <svg>: <{_local_name(root.tag)}>")

    try:
        return _render(root)
    except ConversionError:
        raise
    except Exception as exc:  # noqa: BLE001
        # 例如嵌套过深导致的 RecursionError
        raise ConversionError(f"SVG 转换失败: {type(exc).__name__}: {exc}") from exc


def _render(root: ET.Element) -> str:
    width, height, viewport = _resolve_dimensions(root)
    min_x, min_y, viewport_width, viewport_height = viewport

    lines = [
        f'<vector xmlns:android="{ANDROID_NS}"',
        f'{INDENT}android:width="{_fmt(width)}dp"',
        f'{INDENT}android:height="{_fmt(height)}dp"',
        f'{INDENT}android:viewportWidth="{_fmt(viewport_width)}"',
        f'{INDENT}android:viewportHeight="{_fmt(viewport_height)}">',
    ]

    state = _apply_presentation(root, PaintState())
    depth = 1
    if min_x or min_y:
        # viewBox 原点不为 0 时整体平移
        lines.extend(_open_group(depth, {"translateX": -min_x, "translateY": -min_y}))
        depth += 1

    body = list(_convert_children(root, state, depth))
    if not body:
        LOGGER.debug("SVG 中没有可转换的图形元素")
    lines.extend(body)

    if min_x or min_y:
        lines.append(f"{INDENT * (depth - 1)}</group>")
    lines.append("</vector>")
    return "\n".join(lines) + "\n"


async def convert_vector_file(vector_file: SourceFile) -> SourceFile:
    """读取 SVG 文件并生成同名 .xml 文件对象。"""

    try:
        svg_text = await vector_file.read_text()
    except (OSError, UnicodeDecodeError) as exc:
        raise ConversionError(f"读取 SVG 文件失败: {vector_file.name}") from exc

    drawable = svg_to_vector_drawable(svg_text)
    drawable_name = strip_vector_extension(vector_file.name) + DRAWABLE_EXTENSION
    LOGGER.debug("已生成 %s (%d 字节)", drawable_name, len(drawable))
    return SourceFile.from_text(drawable_name, drawable, DRAWABLE_MIME_TYPE)


def _convert_children(parent: ET.Element, state: PaintState, depth: int) -> Iterator[str]:
    for child in parent:
        if not isinstance(child.tag, str):
            continue  # 注释与处理指令
        name = _local_name(child.tag)
        if name in SKIPPED_ELEMENTS:
            if name not in {"defs", "title", "desc", "metadata", "style"}:
                LOGGER.warning("忽略不支持的 SVG 元素: <%s>", name)
            continue

        child_state = _apply_presentation(child, state)
        if child_state is None:
            continue

        groups = _parse_transform(child.get("transform", ""))
        for offset, attrs in enumerate(groups):
            yield from _open_group(depth + offset, attrs)
        inner_depth = depth + len(groups)

        if name in {"g", "svg", "a"}:
            yield from _convert_children(child, child_state, inner_depth)
        else:
            path_data = _shape_to_path(name, child)
            if path_data:
                yield from _emit_path(path_data, child_state, inner_depth)

        for offset in reversed(range(len(groups))):
            yield f"{INDENT * (depth + offset)}</group>"


def _apply_presentation(element: ET.Element, inherited: PaintState) -> Optional[PaintState]:
    """合并属性与 style 声明；display:none 时返回 None。"""

    declared = {key: element.get(key) for key in STYLE_PROPERTIES if element.get(key) is not None}
    declared.update(_parse_style(element.get("style", "")))
    # inherit 等价于沿用父元素的值
    declared = {key: value for key, value in declared.items() if value.strip().lower() != "inherit"}

    if declared.get("display", "").strip() == "none":
        return None
    if declared.get("visibility", "").strip() in {"hidden", "collapse"}:
        return None

    state = inherited
    if "color" in declared:
        state = replace(state, color=declared["color"].strip())
    if "fill" in declared:
        state = replace(state, fill=declared["fill"].strip())
    if "stroke" in declared:
        state = replace(state, stroke=declared["stroke"].strip())
    if "fill-opacity" in declared:
        state = replace(state, fill_opacity=_parse_opacity(declared["fill-opacity"]))
    if "stroke-opacity" in declared:
        state = replace(state, stroke_opacity=_parse_opacity(declared["stroke-opacity"]))
    if "fill-rule" in declared:
        state = replace(state, fill_rule=declared["fill-rule"].strip())
    if "stroke-width" in declared:
        state = replace(state, stroke_width=_parse_number(declared["stroke-width"], "stroke-width"))
    if "stroke-linecap" in declared:
        state = replace(state, stroke_linecap=declared["stroke-linecap"].strip())
    if "stroke-linejoin" in declared:
        state = replace(state, stroke_linejoin=declared["stroke-linejoin"].strip())
    if "stroke-miterlimit" in declared:
        state = replace(state, stroke_miterlimit=_parse_number(declared["stroke-miterlimit"], "stroke-miterlimit"))
    if "opacity" in declared:
        # opacity 不继承，但对子元素的效果等价于相乘
        state = replace(state, opacity=state.opacity * _parse_opacity(declared["opacity"]))
    return state


def _emit_path(path_data: str, state: PaintState, depth: int) -> Iterator[str]:
    attrs: list[tuple[str, str]] = []

    fill_rgba = _resolve_paint(state.fill, state)
    if fill_rgba is not None:
        attrs.append(("fillColor", to_android_color(fill_rgba)))
        fill_alpha = fill_rgba[3] * state.fill_opacity * state.opacity
        if fill_alpha < 1.0:
            attrs.append(("fillAlpha", _fmt(fill_alpha)))
        if state.fill_rule == "evenodd":
            attrs.append(("fillType", "evenOdd"))

    stroke_rgba = _resolve_paint(state.stroke, state)
    if stroke_rgba is not None and state.stroke_width > 0:
        attrs.append(("strokeColor", to_android_color(stroke_rgba)))
        attrs.append(("strokeWidth", _fmt(state.stroke_width)))
        stroke_alpha = stroke_rgba[3] * state.stroke_opacity * state.opacity
        if stroke_alpha < 1.0:
            attrs.append(("strokeAlpha", _fmt(stroke_alpha)))
        if state.stroke_linecap in LINECAP and state.stroke_linecap != "butt":
            attrs.append(("strokeLineCap", LINECAP[state.stroke_linecap]))
        if state.stroke_linejoin in LINEJOIN and state.stroke_linejoin != "miter":
            attrs.append(("strokeLineJoin", LINEJOIN[state.stroke_linejoin]))
        if state.stroke_miterlimit != 4.0:
            attrs.append(("strokeMiterLimit", _fmt(state.stroke_miterlimit)))

    attrs.append(("pathData", path_data))

    pad = INDENT * depth
    yield f"{pad}<path"
    for index, (key, value) in enumerate(attrs):
        closing = "/>" if index == len(attrs) - 1 else ""
        yield f'{pad}{INDENT}android:{key}="{_quote(value)}"{closing}'


def _open_group(depth: int, attrs: dict[str, float]) -> Iterator[str]:
    pad = INDENT * depth
    items = [(key, value) for key, value in attrs.items() if value is not None]
    if not items:
        yield f"{pad}<group>"
        return
    yield f"{pad}<group"
    for index, (key, value) in enumerate(items):
        closing = ">" if index == len(items) - 1 else ""
        yield f'{pad}{INDENT}android:{key}="{_fmt(value)}"{closing}'


def _resolve_paint(value: str, state: PaintState) -> Optional[Rgba]:
    if value.startswith("url("):
        LOGGER.warning("不支持渐变或图案填充，已忽略: %s", value)
        return None
    if value.lower() == "currentcolor":
        value = state.color
        if value.lower() == "currentcolor":
            value = "black"
    return parse_svg_color(value)


def _shape_to_path(name: str, element: ET.Element) -> Optional[str]:
    """把基本图形转换为 pathData。"""

    if name == "path":
        data = " ".join((element.get("d") or "").split())
        return data or None

    if name == "rect":
        x = _attr_number(element, "x")
        y = _attr_number(element, "y")
        width = _attr_number(element, "width")
        height = _attr_number(element, "height")
        if width <= 0 or height <= 0:
            return None
        rx_raw, ry_raw = element.get("rx"), element.get("ry")
        rx = _attr_number(element, "rx") if rx_raw is not None else None
        ry = _attr_number(element, "ry") if ry_raw is not None else None
        if rx is None and ry is None:
            return f"M{_fmt(x)},{_fmt(y)}h{_fmt(width)}v{_fmt(height)}h{_fmt(-width)}Z"
        rx = min(rx if rx is not None else ry, width / 2)
        ry = min(ry if ry is not None else rx, height / 2)
        return (
            f"M{_fmt(x + rx)},{_fmt(y)}"
            f"h{_fmt(width - 2 * rx)}"
            f"a{_fmt(rx)},{_fmt(ry)} 0 0,1 {_fmt(rx)},{_fmt(ry)}"
            f"v{_fmt(height - 2 * ry)}"
            f"a{_fmt(rx)},{_fmt(ry)} 0 0,1 {_fmt(-rx)},{_fmt(ry)}"
            f"h{_fmt(-(width - 2 * rx))}"
            f"a{_fmt(rx)},{_fmt(ry)} 0 0,1 {_fmt(-rx)},{_fmt(-ry)}"
            f"v{_fmt(-(height - 2 * ry))}"
            f"a{_fmt(rx)},{_fmt(ry)} 0 0,1 {_fmt(rx)},{_fmt(-ry)}Z"
        )

    if name in {"circle", "ellipse"}:
        cx = _attr_number(element, "cx")
        cy = _attr_number(element, "cy")
        if name == "circle":
            rx = ry = _attr_number(element, "r")
        else:
            rx = _attr_number(element, "rx")
            ry = _attr_number(element, "ry")
        if rx <= 0 or ry <= 0:
            return None
        return (
            f"M{_fmt(cx - rx)},{_fmt(cy)}"
            f"a{_fmt(rx)},{_fmt(ry)} 0 1,0 {_fmt(2 * rx)},0"
            f"a{_fmt(rx)},{_fmt(ry)} 0 1,0 {_fmt(-2 * rx)},0Z"
        )

    if name == "line":
        return (
            f"M{_fmt(_attr_number(element, 'x1'))},{_fmt(_attr_number(element, 'y1'))}"
            f"L{_fmt(_attr_number(element, 'x2'))},{_fmt(_attr_number(element, 'y2'))}"
        )

    if name in {"polyline", "polygon"}:
        numbers = [float(item) for item in _NUMBER_RE.findall(element.get("points", ""))]
        if len(numbers) < 4:
            return None
        points = [f"{_fmt(numbers[i])},{_fmt(numbers[i + 1])}" for i in range(0, len(numbers) - 1, 2)]
        data = f"M{points[0]}L" + " ".join(points[1:])
        return data + "Z" if name == "polygon" else data

    LOGGER.warning("忽略未知的 SVG 元素: <%s>", name)
    return None


def _parse_transform(value: str) -> list[dict[str, float]]:
    """解析 transform 列表，每个变换对应一层 <group>，外层在前。"""

    groups: list[dict[str, float]] = []
    for kind, raw_args in _TRANSFORM_RE.findall(value or ""):
        args = [float(item) for item in _NUMBER_RE.findall(raw_args)]
        if kind == "translate" and args:
            groups.append({"translateX": args[0], "translateY": args[1] if len(args) > 1 else 0.0})
        elif kind == "scale" and args:
            groups.append({"scaleX": args[0], "scaleY": args[1] if len(args) > 1 else args[0]})
        elif kind == "rotate" and args:
            group = {"rotation": args[0]}
            if len(args) >= 3:
                group.update(pivotX=args[1], pivotY=args[2])
            groups.append(group)
        elif kind == "matrix" and len(args) == 6:
            groups.append(_decompose_matrix(*args))
        else:
            raise ConversionError(f"不支持的变换: {kind}({raw_args})")
    return groups


def _decompose_matrix(a: float, b: float, c: float, d: float, e: float, f: float) -> dict[str, float]:
    """把不含斜切的仿射矩阵拆成平移、旋转与缩放。"""

    scale_x = math.hypot(a, b)
    if scale_x == 0:
        raise ConversionError("变换矩阵不可逆")
    rotation = math.atan2(b, a)
    scale_y = (a * d - b * c) / scale_x
    if not (
        math.isclose(c, -scale_y * math.sin(rotation), abs_tol=1e-6)
        and math.isclose(d, scale_y * math.cos(rotation), abs_tol=1e-6)
    ):
        raise ConversionError("不支持包含斜切的 matrix 变换")
    group = {"translateX": e, "translateY": f, "rotation": math.degrees(rotation), "scaleX": scale_x, "scaleY": scale_y}
    return {key: value for key, value in group.items() if value != (1.0 if key.startswith("scale") else 0.0)}


def _resolve_dimensions(root: ET.Element) -> tuple[float, float, tuple[float, float, float, float]]:
    width = _parse_length(root.get("width"))
    height = _parse_length(root.get("height"))

    view_box = root.get("viewBox")
    if view_box:
        numbers = [float(item) for item in _NUMBER_RE.findall(view_box)]
        if len(numbers) != 4 or numbers[2] <= 0 or numbers[3] <= 0:
            raise ConversionError(f"无效的 viewBox: {view_box}")
        viewport = (numbers[0], numbers[1], numbers[2], numbers[3])
    elif width and height:
        viewport = (0.0, 0.0, width, height)
    else:
        raise ConversionError("SVG 缺少 viewBox 与宽高信息")

    return width or viewport[2], height or viewport[3], viewport


def _parse_length(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    match = _LENGTH_RE.match(value)
    if not match:
        return None  # 百分比等相对单位交给 viewBox
    number = float(match.group(1))
    return number if number > 0 else None


def _parse_style(style: str) -> dict[str, str]:
    declarations: dict[str, str] = {}
    for chunk in style.split(";"):
        if ":" not in chunk:
            continue
        key, value = chunk.split(":", 1)
        declarations[key.strip()] = value.strip()
    return declarations


def _parse_opacity(value: str) -> float:
    text = value.strip()
    if text.endswith("%"):
        number = _parse_number(text[:-1], "opacity") / 100
    else:
        number = _parse_number(text, "opacity")
    return max(0.0, min(number, 1.0))


def _parse_number(value: str, label: str) -> float:
    match = _NUMBER_RE.match(value.strip())
    if not match:
        raise ConversionError(f"无法解析 {label}: {value}")
    return float(match.group(0))


def _attr_number(element: ET.Element, name: str) -> float:
    value = element.get(name)
    if value is None:
        return 0.0
    return _parse_number(value, name)


def _quote(value: str) -> str:
    return escape(value, {'"': "&quot;"})


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _fmt(value: float) -> str:
    """格式化数字，去掉多余的小数位。"""

    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return "0" if text in {"-0", ""} else text
