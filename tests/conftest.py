"""测试共用的假服务与文件构造工具。"""

from __future__ import annotations

import asyncio
import io
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

import pytest
from aiohttp import test_utils, web
from PIL import Image

from guide_ingest.core.exceptions import RegistrationError, ServiceError, TransferError
from guide_ingest.core.models import (
    DRAWABLE_MIME_TYPE,
    VECTOR_MIME_TYPE,
    Category,
    GuideRecord,
    RegistrationPayload,
    SourceFile,
    UploadDestination,
    UploadDestinations,
)
from guide_ingest.core.progress import UploadProgress
from guide_ingest.services.base import GuideService, TransferProgressCallback

SIMPLE_SVG = (
    '<svg xmlns="http://www.w3.org/2000/svg" width="24" height="24" viewBox="0 0 24 24">'
    '<path d="M0 0 L24 24" fill="#ff0000"/>'
    "</svg>"
)


def png_bytes(color: str = "blue") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color).save(buffer, format="PNG")
    return buffer.getvalue()


def svg_source(name: str, text: str = SIMPLE_SVG) -> SourceFile:
    return SourceFile(name=name, mime_type=VECTOR_MIME_TYPE, last_modified=0.0, data=text.encode("utf-8"))


def raster_source(name: str) -> SourceFile:
    mime_type = "image/png" if name.lower().endswith(".png") else "image/jpeg"
    return SourceFile(name=name, mime_type=mime_type, last_modified=0.0, data=png_bytes())


def drawable_source(name: str) -> SourceFile:
    return SourceFile(name=name, mime_type=DRAWABLE_MIME_TYPE, last_modified=0.0, data=b"<vector/>")


class FakeGuideService(GuideService):
    """记录调用顺序的内存版服务；可按文件名或基础名注入失败。"""

    def __init__(self, categories: Optional[Sequence[Category]] = None, steps: int = 4) -> None:
        self.categories = list(categories or [Category(id=7, name="food"), Category(id=9, name="people")])
        self.steps = steps
        self.calls: list[tuple[str, Optional[str]]] = []
        self.registrations: list[RegistrationPayload] = []
        self.fail_destinations_for: set[str] = set()
        self.fail_transfer_for: set[str] = set()
        self.fail_register_for: set[str] = set()
        self.fail_categories = False

    async def request_upload_destinations(self, file_name: str) -> UploadDestinations:
        self.calls.append(("destinations", file_name))
        await asyncio.sleep(0)
        if file_name in self.fail_destinations_for:
            raise ServiceError(f"POST /api/guides/presigned-urls 失败: HTTP 403 ({file_name})")
        return UploadDestinations(
            drawable=UploadDestination(f"https://storage.test/{file_name}.xml?sig=1", f"guides/{file_name}.xml"),
            raster=UploadDestination(f"https://storage.test/{file_name}.png?sig=1", f"images/{file_name}.png"),
            vector=UploadDestination(f"https://storage.test/{file_name}.svg?sig=1", f"svgs/{file_name}.svg"),
        )

    async def transfer_to_storage(
        self,
        upload_url: str,
        source: SourceFile,
        on_progress: TransferProgressCallback = None,
    ) -> None:
        self.calls.append(("transfer", source.name))
        if source.name in self.fail_transfer_for:
            raise TransferError(f"上传 {source.name} 失败: HTTP 500")
        total = 400
        for step in range(1, self.steps + 1):
            await asyncio.sleep(0)
            if on_progress:
                on_progress(UploadProgress(loaded=total * step // self.steps, total=total))

    async def register_metadata(self, payload: RegistrationPayload) -> GuideRecord:
        self.calls.append(("register", payload.file_name))
        await asyncio.sleep(0)
        if payload.file_name in self.fail_register_for:
            raise RegistrationError("POST /api/guides 失败: HTTP 400")
        self.registrations.append(payload)
        return GuideRecord(
            guide_id=len(self.registrations),
            file_name=payload.file_name,
            vector_key=payload.vector_key,
            raster_key=payload.raster_key,
            guide_key=payload.drawable_key,
            content=payload.description,
            tags=payload.tags,
        )

    async def list_categories(self) -> list[Category]:
        self.calls.append(("categories", None))
        if self.fail_categories:
            raise ServiceError("GET /api/sub-categories 失败: HTTP 401")
        return list(self.categories)

    async def delete_guides(self, guide_ids: Sequence[int]) -> None:
        self.calls.append(("delete", ",".join(map(str, guide_ids))))

    def network_calls(self) -> list[tuple[str, Optional[str]]]:
        return [call for call in self.calls if call[0] != "categories"]


class Recorder:
    """记录测试服务器收到的请求。"""

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []

    async def capture(self, request: web.Request) -> dict[str, Any]:
        body = await request.read()
        entry = {
            "method": request.method,
            "path": request.path,
            "authorization": request.headers.get("Authorization"),
            "content_type": request.headers.get("Content-Type"),
            "body": body,
        }
        self.requests.append(entry)
        return entry


def envelope(result: Any) -> dict[str, Any]:
    return {"code": "OK", "message": "success", "result": result}


def build_service_app(
    recorder: Recorder,
    fail_files: Optional[set[str]] = None,
    **status: int,
) -> web.Application:
    """模拟指南服务与对象存储。

    status 按接口注入 HTTP 错误；fail_files 中的文件名上传到存储时返回 500。
    """

    fail_files = fail_files or set()

    async def presigned(request: web.Request) -> web.Response:
        await recorder.capture(request)
        if status.get("presigned"):
            return web.Response(status=status["presigned"], text="forbidden")
        name = (await request.json())["fileName"]
        base = str(request.url.origin())
        return web.json_response(
            envelope(
                {
                    "guideS3Key": f"guides/{name}.xml",
                    "guideUploadUrl": f"{base}/storage/guides/{name}.xml?sig=a",
                    "svgS3Key": f"svgs/{name}.svg",
                    "svgUploadUrl": f"{base}/storage/svgs/{name}.svg?sig=b",
                    "imageS3Key": f"images/{name}.png",
                    "imageUploadUrl": f"{base}/storage/images/{name}.png?sig=c",
                }
            )
        )

    async def storage(request: web.Request) -> web.Response:
        await recorder.capture(request)
        if request.path.rsplit("/", 1)[-1] in fail_files:
            return web.Response(status=500, text="storage error")
        return web.Response(status=status.get("storage", 200))

    async def guides(request: web.Request) -> web.Response:
        entry = await recorder.capture(request)
        if request.method == "DELETE":
            return web.Response(status=200)
        if status.get("register"):
            return web.Response(status=status["register"], text="bad request")
        payload = await request.json()
        entry["json"] = payload
        return web.json_response(
            envelope(
                {
                    "guideId": 11,
                    "fileName": payload["fileName"],
                    "svgS3Key": payload["svgS3Key"],
                    "imageS3Key": payload["imageS3Key"],
                    "guideS3Key": payload["guideS3Key"],
                    "content": payload["content"],
                    "tags": payload["tags"],
                    "categoryName": "food",
                    "subCategoryName": "snack",
                }
            )
        )

    async def sub_categories(request: web.Request) -> web.Response:
        await recorder.capture(request)
        if status.get("categories"):
            return web.Response(status=status["categories"], text="unauthorized")
        return web.json_response(
            envelope(
                [
                    {"id": 3, "name": "people", "tips": "", "categoryName": "life"},
                    {"id": 1, "name": "animals", "tips": "cute", "categoryName": "life"},
                ]
            )
        )

    async def broken(request: web.Request) -> web.Response:
        await recorder.capture(request)
        return web.Response(text="<html>not json</html>")

    app = web.Application()
    app.router.add_post("/api/guides/presigned-urls", presigned)
    app.router.add_post("/api/guides", guides)
    app.router.add_delete("/api/guides", guides)
    app.router.add_get("/api/sub-categories", sub_categories)
    app.router.add_put("/storage/{key:.+}", storage)
    app.router.add_get("/api/broken", broken)
    return app


@contextmanager
def serve_in_thread(app: web.Application) -> Iterator[str]:
    """在后台线程的事件循环中运行测试服务器，返回服务地址。

    命令行会自行调用 asyncio.run，因此服务器不能与它共用事件循环。
    """

    loop = asyncio.new_event_loop()
    ready = threading.Event()
    servers: list[test_utils.TestServer] = []

    async def start() -> None:
        server = test_utils.TestServer(app)
        await server.start_server()
        servers.append(server)

    def run() -> None:
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(start())
        finally:
            ready.set()
        loop.run_forever()

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    ready.wait(timeout=10)
    assert servers, "测试服务器启动失败"
    try:
        yield str(servers[0].make_url("/")).rstrip("/")
    finally:
        asyncio.run_coroutine_threadsafe(servers[0].close(), loop).result(timeout=10)
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout=10)
        loop.close()


@pytest.fixture
def fake_service() -> FakeGuideService:
    return FakeGuideService()
