"""指南服务的调用接口。

上传编排与批处理只依赖这里的抽象方法，具体的 HTTP 实现见
guide_ingest.services.client。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Optional, Sequence

from guide_ingest.core.models import (
    Category,
    GuideRecord,
    RegistrationPayload,
    SourceFile,
    UploadDestinations,
)
from guide_ingest.core.progress import UploadProgress

TransferProgressCallback = Optional[Callable[[UploadProgress], None]]


class GuideService(ABC):
    """登记指南所需的外部服务操作。"""

    @abstractmethod
    async def request_upload_destinations(self, file_name: str) -> UploadDestinations:
        """申请 XML、SVG、图片三个预签名上传地址。"""

    @abstractmethod
    async def transfer_to_storage(
        self,
        upload_url: str,
        source: SourceFile,
        on_progress: TransferProgressCallback = None,
    ) -> None:
        """把文件写入对象存储，过程中按字节回报进度。"""

    @abstractmethod
    async def register_metadata(self, payload: RegistrationPayload) -> GuideRecord:
        """登记元数据，返回服务端的指南记录。"""

    @abstractmethod
    async def list_categories(self) -> list[Category]:
        """返回按名称排序的子分类列表。"""

    @abstractmethod
    async def delete_guides(self, guide_ids: Sequence[int]) -> None:
        """按 ID 删除已登记的指南。"""
