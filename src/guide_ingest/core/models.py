"""核心数据模型定义。"""

from __future__ import annotations

import mimetypes
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import aiofiles

STATUS_IDLE = "idle"
STATUS_UPLOADING = "uploading"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

VECTOR_MIME_TYPE = "image/svg+xml"
DRAWABLE_MIME_TYPE = "application/xml"


@dataclass(frozen=True, slots=True)
class SourceFile:
    """用户选择（或自动生成）的文件，内容来自磁盘路径或内存。"""

    name: str
    mime_type: str
    last_modified: float
    path: Optional[Path] = None
    data: Optional[bytes] = None

    @classmethod
    def from_path(cls, path: Path) -> "SourceFile":
        """根据磁盘文件创建，内容延迟读取。"""

        mime_type, _ = mimetypes.guess_type(path.name)
        if path.suffix.lower() == ".svg":
            mime_type = VECTOR_MIME_TYPE
        return cls(
            name=path.name,
            mime_type=mime_type or "application/octet-stream",
            last_modified=path.stat().st_mtime,
            path=path,
        )

    @classmethod
    def from_text(cls, name: str, text: str, mime_type: str) -> "SourceFile":
        """以文本内容创建内存文件，修改时间取当前时间。"""

        return cls(name=name, mime_type=mime_type, last_modified=time.time(), data=text.encode("utf-8"))

    @property
    def suffix(self) -> str:
        return Path(self.name).suffix.lower()

    async def read_bytes(self) -> bytes:
        if self.data is not None:
            return self.data
        if self.path is None:
            raise OSError(f"文件没有可读取的内容: {self.name}")
        async with aiofiles.open(self.path, "rb") as handle:
            return await handle.read()

    async def read_text(self) -> str:
        payload = await self.read_bytes()
        return payload.decode("utf-8")


@dataclass(frozen=True, slots=True)
class MatchedPair:
    """批量模式下按文件名配对成功的 (SVG, 图片) 组合。"""

    base_name: str
    vector_file: SourceFile
    raster_file: SourceFile


@dataclass(frozen=True, slots=True)
class MatchResult:
    """文件配对结果：成功的配对与未能配对的文件。"""

    pairs: tuple[MatchedPair, ...]
    unmatched: tuple[SourceFile, ...]


@dataclass(frozen=True, slots=True)
class Category:
    """指南所属的子分类。"""

    id: int
    name: str
    tips: str = ""
    category_name: str = ""

    @classmethod
    def from_json(cls, payload: dict[str, Any]) -> "Category":
        return cls(
            id=int(payload["id"]),
            name=str(payload.get("name", "")),
            tips=payload.get("tips") or "",
            category_name=payload.get("categoryName") or "",
        )


@dataclass(frozen=True, slots=True)
class GuideRecord:
    """登记成功后服务端返回的指南记录。"""

    guide_id: int
    file_name: str
    vector_key: str
    raster_key: str
    guide_key: Optional[str] = None
    content: Optional[str] = None
    category_name: str = ""
    sub_category_name: str = ""
    tags: tuple[str, ...] = ()

    @classmethod
    def from_json(cls, payload: dict[str, Any]) -> "GuideRecord":
        return cls(
            guide_id=int(payload["guideId"]),
            file_name=payload.get("fileName", ""),
            vector_key=payload.get("svgS3Key", ""),
            raster_key=payload.get("imageS3Key", ""),
            guide_key=payload.get("guideS3Key"),
            content=payload.get("content"),
            category_name=payload.get("categoryName") or "",
            sub_category_name=payload.get("subCategoryName") or "",
            tags=tuple(payload.get("tags") or ()),
        )


@dataclass(frozen=True, slots=True)
class UploadDestination:
    """预签名上传地址及其最终存储键。"""

    upload_url: str
    storage_key: str


@dataclass(frozen=True, slots=True)
class UploadDestinations:
    """一次申请得到的三个上传目标。"""

    drawable: UploadDestination
    raster: UploadDestination
    vector: UploadDestination

    @classmethod
    def from_json(cls, payload: dict[str, Any]) -> "UploadDestinations":
        return cls(
            drawable=_destination(payload, "guideUploadUrl", "guideS3Key"),
            raster=_destination(payload, "imageUploadUrl", "imageS3Key"),
            vector=_destination(payload, "svgUploadUrl", "svgS3Key"),
        )


def _destination(payload: dict[str, Any], url_field: str, key_field: str) -> UploadDestination:
    url, key = payload[url_field], payload[key_field]
    if not isinstance(url, str) or not url or not isinstance(key, str) or not key:
        raise TypeError(f"{url_field}/{key_field} 必须是非空字符串")
    return UploadDestination(url, key)


@dataclass(frozen=True, slots=True)
class RegistrationPayload:
    """元数据登记请求。"""

    drawable_key: Optional[str]
    vector_key: str
    file_name: str
    raster_key: str
    category_id: int
    description: Optional[str] = None
    tags: tuple[str, ...] = ()

    def to_json(self) -> dict[str, Any]:
        """转换为服务端字段名；guideS3Key 与 content 缺省时显式为 null。"""

        return {
            "guideS3Key": self.drawable_key,
            "svgS3Key": self.vector_key,
            "fileName": self.file_name,
            "imageS3Key": self.raster_key,
            "subCategoryId": self.category_id,
            "content": self.description,
            "tags": list(self.tags),
        }


@dataclass(frozen=True, slots=True)
class FileTriple:
    """单个登记单元：图片、SVG 以及由 SVG 派生的 XML。"""

    id: str
    vector_source: Optional[SourceFile] = None
    derived_drawable: Optional[SourceFile] = None
    raster_image: Optional[SourceFile] = None
    base_name: str = ""
    name_mismatch: bool = False
    category_id: int = 1
    description: str = ""
    tags: tuple[str, ...] = ()
    tag_draft: str = ""
    is_composing: bool = False
    status: str = STATUS_IDLE
    progress: float = 0.0
    error: Optional[str] = None
    guide: Optional[GuideRecord] = None

    @property
    def is_ready(self) -> bool:
        """三个文件齐全、文件名一致且尚未上传时才允许上传。"""

        return (
            self.raster_image is not None
            and self.derived_drawable is not None
            and self.vector_source is not None
            and not self.name_mismatch
            and self.status == STATUS_IDLE
        )

    @property
    def is_locked(self) -> bool:
        return self.status != STATUS_IDLE


@dataclass(slots=True)
class ItemOutcome:
    """记录批处理中单个配对的结果（用于报告/日志）。"""

    base_name: str
    status: str
    guide_id: Optional[int] = None
    category_id: Optional[int] = None
    message: Optional[str] = None


@dataclass(slots=True)
class BatchResult:
    """批量登记的最终产出。"""

    succeeded: list[ItemOutcome] = field(default_factory=list)
    failed: list[ItemOutcome] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def all_failed(self) -> bool:
        """没有任何成功项时，整批视为失败。"""

        return self.success_count == 0

    def all_outcomes(self) -> list[ItemOutcome]:
        """返回所有结果记录，方便生成报告。"""

        return [*self.succeeded, *self.failed]
