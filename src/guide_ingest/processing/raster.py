"""位图文件识别：确定真实格式与上传时使用的 Content-Type。"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from guide_ingest.core.exceptions import UnsupportedContentError

LOGGER = logging.getLogger(__name__)

SUPPORTED_FORMATS = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
}


@dataclass(frozen=True, slots=True)
class RasterInfo:
    """位图的基础信息。"""

    format: str
    mime_type: str
    size: tuple[int, int]


def inspect_raster(payload: bytes, name: str = "<memory>") -> RasterInfo:
    """识别图片格式，仅接受 PNG 与 JPEG。

    扩展名与实际内容不一致时以实际内容为准。
    """

    try:
        with Image.open(io.BytesIO(payload)) as img:
            image_format = img.format or ""
            size = img.size
    except (UnidentifiedImageError, OSError) as exc:
        LOGGER.debug("无法识别图像文件 %s: %s", name, exc)
        raise UnsupportedContentError(f"无法识别的图片文件: {name}") from exc

    mime_type = SUPPORTED_FORMATS.get(image_format)
    if mime_type is None:
        raise UnsupportedContentError(f"不支持的图片格式 {image_format}: {name}")
    return RasterInfo(format=image_format, mime_type=mime_type, size=size)
