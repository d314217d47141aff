"""基于 aiohttp 的指南服务客户端。"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Sequence

import aiohttp

from guide_ingest.core.config import ServiceConfig
from guide_ingest.core.exceptions import (
    GuideIngestError,
    RegistrationError,
    ServiceError,
    TransferError,
    UnsupportedContentError,
)
from guide_ingest.core.models import (
    DRAWABLE_MIME_TYPE,
    VECTOR_MIME_TYPE,
    Category,
    GuideRecord,
    RegistrationPayload,
    SourceFile,
    UploadDestinations,
)
from guide_ingest.core.progress import UploadProgress
from guide_ingest.processing.raster import inspect_raster
from guide_ingest.services.base import GuideService, TransferProgressCallback
from guide_ingest.services.credentials import CredentialProvider, bearer_header

LOGGER = logging.getLogger(__name__)

PRESIGNED_URLS_PATH = "/api/guides/presigned-urls"
GUIDES_PATH = "/api/guides"
SUB_CATEGORIES_PATH = "/api/sub-categories"


class GuideServiceClient(GuideService):
    """通过 REST 接口与对象存储完成登记流程。

    接口请求附带 Authorization 头；预签名地址的上传请求不附带。
    """

    def __init__(
        self,
        config: ServiceConfig,
        credentials: Optional[CredentialProvider] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config
        self.credentials = credentials or CredentialProvider()
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "GuideServiceClient":
        self._get_session()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def request_upload_destinations(self, file_name: str) -> UploadDestinations:
        result = await self._call("POST", PRESIGNED_URLS_PATH, {"fileName": file_name})
        try:
            return UploadDestinations.from_json(result)
        except (KeyError, TypeError) as exc:
            raise ServiceError(f"预签名地址响应缺少字段: {exc}") from exc

    async def transfer_to_storage(
        self,
        upload_url: str,
        source: SourceFile,
        on_progress: TransferProgressCallback = None,
    ) -> None:
        try:
            payload = await source.read_bytes()
        except OSError as exc:
            raise TransferError(f"读取文件失败: {source.name}") from exc

        content_type = _resolve_content_type(source, payload)
        total = len(payload)
        LOGGER.debug("开始上传 %s (%d 字节, %s)", source.name, total, content_type)

        headers = {"Content-Type": content_type, "Content-Length": str(total)}
        timeout = aiohttp.ClientTimeout(total=self.config.transfer_timeout)
        try:
            async with self._get_session().put(
                upload_url,
                data=_iter_chunks(payload, self.config.chunk_size, on_progress),
                headers=headers,
                timeout=timeout,
            ) as response:
                if response.status >= 400:
                    detail = await response.text()
                    raise TransferError(
                        f"上传 {source.name} 失败: HTTP {response.status} {_shorten(detail)}"
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransferError(f"上传 {source.name} 失败: {_describe(exc)}") from exc

        LOGGER.debug("上传完成: %s", source.name)

    async def register_metadata(self, payload: RegistrationPayload) -> GuideRecord:
        result = await self._call("POST", GUIDES_PATH, payload.to_json(), error_cls=RegistrationError)
        try:
            return GuideRecord.from_json(result)
        except (KeyError, TypeError, ValueError) as exc:
            raise RegistrationError(f"登记响应格式错误: {exc}") from exc

    async def list_categories(self) -> list[Category]:
        result = await self._call("GET", SUB_CATEGORIES_PATH)
        try:
            categories = [Category.from_json(item) for item in result or []]
        except (KeyError, TypeError, ValueError) as exc:
            raise ServiceError(f"子分类响应格式错误: {exc}") from exc
        categories.sort(key=lambda item: item.name)
        return categories

    async def delete_guides(self, guide_ids: Sequence[int]) -> None:
        await self._call("DELETE", GUIDES_PATH, {"guideIds": list(guide_ids)})

    async def _call(
        self,
        method: str,
        path: str,
        body: Optional[dict[str, Any]] = None,
        error_cls: type[GuideIngestError] = ServiceError,
    ) -> Any:
        """调用接口并返回响应信封中的 result 字段。"""

        url = f"{self.config.base_url}{path}"
        headers = bearer_header(self.credentials.get_token())
        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
        LOGGER.debug("接口请求: %s %s", method, url)

        try:
            async with self._get_session().request(
                method, url, json=body, headers=headers, timeout=timeout
            ) as response:
                if response.status == 401:
                    LOGGER.warning("认证失败，请检查令牌")
                if response.status >= 400:
                    detail = await response.text()
                    raise error_cls(f"{method} {path} 失败: HTTP {response.status} {_shorten(detail)}")
                if response.content_length == 0:
                    return None
                envelope = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise error_cls(f"{method} {path} 失败: {_describe(exc)}") from exc
        except ValueError as exc:
            raise error_cls(f"{method} {path} 返回了无效的 JSON") from exc

        if not isinstance(envelope, dict):
            return envelope
        return envelope.get("result")

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session


def _resolve_content_type(source: SourceFile, payload: bytes) -> str:
    """XML 与 SVG 以文本上传，图片按实际格式以二进制上传。"""

    if source.mime_type == DRAWABLE_MIME_TYPE or source.suffix == ".xml":
        _ensure_text(source, payload)
        return DRAWABLE_MIME_TYPE
    if source.mime_type == VECTOR_MIME_TYPE or source.suffix == ".svg":
        _ensure_text(source, payload)
        return VECTOR_MIME_TYPE
    if source.mime_type.startswith("image/"):
        return inspect_raster(payload, source.name).mime_type
    raise UnsupportedContentError(f"不支持的文件类型: {source.mime_type} ({source.name})")


def _ensure_text(source: SourceFile, payload: bytes) -> None:
    try:
        payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise UnsupportedContentError(f"文件不是有效的 UTF-8 文本: {source.name}") from exc


async def _iter_chunks(
    payload: bytes, chunk_size: int, on_progress: TransferProgressCallback
) -> AsyncIterator[bytes]:
    total = len(payload)
    loaded = 0
    for start in range(0, total, chunk_size):
        chunk = payload[start : start + chunk_size]
        yield chunk
        loaded += len(chunk)
        if on_progress:
            on_progress(UploadProgress(loaded=loaded, total=total))


def _shorten(text: str, limit: int = 200) -> str:
    text = text.strip()
    return text if len(text) <= limit else text[:limit] + "..."


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__
