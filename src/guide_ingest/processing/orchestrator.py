"""单个指南的上传编排：申请地址、三次上传、登记元数据。"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from guide_ingest.core.exceptions import GuideIngestError, UploadPreconditionError
from guide_ingest.core.models import GuideRecord, RegistrationPayload, SourceFile
from guide_ingest.core.progress import (
    DRAWABLE_BAND,
    RASTER_BAND,
    REGISTRATION_PIN,
    VECTOR_BAND,
    MonotonicProgress,
    ProgressBand,
    UploadProgress,
)
from guide_ingest.processing.triples import (
    TripleWorkspace,
    begin_upload,
    complete_upload,
    fail_upload,
    update_progress,
)
from guide_ingest.services.base import GuideService

LOGGER = logging.getLogger(__name__)

ItemProgressCallback = Optional[Callable[[float], None]]
RefreshCallback = Optional[Callable[[], None]]


async def upload_guide_triple(
    service: GuideService,
    *,
    raster_image: SourceFile,
    derived_drawable: Optional[SourceFile],
    vector_source: SourceFile,
    base_name: str,
    category_id: int,
    description: Optional[str] = None,
    tags: Sequence[str] = (),
    on_progress: ItemProgressCallback = None,
) -> GuideRecord:
    """按顺序完成一个三元组的上传与登记，返回登记后的指南记录。

    进度分段：图片 0-50，XML 50-75（没有 XML 时直接跳到 75），
    SVG 75-100，登记前固定为 80，登记成功后为 100。回调收到的值不会回退。
    任一步骤失败都会中止后续步骤并原样抛出，已上传的对象不做回滚。
    """

    progress = MonotonicProgress(on_progress)
    try:
        LOGGER.info("开始上传: %s", base_name)
        destinations = await service.request_upload_destinations(base_name)

        await service.transfer_to_storage(
            destinations.raster.upload_url, raster_image, _band_reporter(progress, RASTER_BAND)
        )
        progress.report(RASTER_BAND.end)

        drawable_key: Optional[str] = None
        if derived_drawable is not None:
            await service.transfer_to_storage(
                destinations.drawable.upload_url, derived_drawable, _band_reporter(progress, DRAWABLE_BAND)
            )
            drawable_key = destinations.drawable.storage_key
        else:
            LOGGER.info("没有 XML 文件，跳过上传: %s", base_name)
        progress.report(DRAWABLE_BAND.end)

        await service.transfer_to_storage(
            destinations.vector.upload_url, vector_source, _band_reporter(progress, VECTOR_BAND)
        )
        progress.report(REGISTRATION_PIN)

        guide = await service.register_metadata(
            RegistrationPayload(
                drawable_key=drawable_key,
                vector_key=destinations.vector.storage_key,
                file_name=base_name,
                raster_key=destinations.raster.storage_key,
                category_id=category_id,
                description=description or None,
                tags=tuple(tags),
            )
        )
    except GuideIngestError as exc:
        LOGGER.error("上传失败 %s: %s", base_name, exc)
        raise

    progress.report(100.0)
    LOGGER.info("登记完成: %s (guide_id=%s)", base_name, guide.guide_id)
    return guide


async def upload_triple(
    workspace: TripleWorkspace,
    triple_id: str,
    service: GuideService,
    on_refresh: RefreshCallback = None,
) -> GuideRecord:
    """上传工作区中的一个三元组并维护其状态。

    条件不满足时在任何网络请求之前抛出 UploadPreconditionError，状态保持 idle。
    """

    triple = workspace.get(triple_id)
    if not triple.is_ready:
        raise UploadPreconditionError(_precondition_message(triple))

    workspace.apply(begin_upload, triple_id)
    try:
        guide = await upload_guide_triple(
            service,
            raster_image=triple.raster_image,
            derived_drawable=triple.derived_drawable,
            vector_source=triple.vector_source,
            base_name=triple.base_name,
            category_id=triple.category_id,
            description=triple.description,
            tags=triple.tags,
            on_progress=lambda value: workspace.apply(update_progress, triple_id, value),
        )
    except Exception as exc:
        workspace.apply(fail_upload, triple_id, str(exc) or type(exc).__name__)
        raise

    workspace.apply(complete_upload, triple_id, guide)
    if on_refresh:
        on_refresh()
    return guide


async def upload_pending(
    workspace: TripleWorkspace,
    service: GuideService,
    on_refresh: RefreshCallback = None,
) -> int:
    """按添加顺序依次上传所有可上传的三元组，返回成功数量。

    单项失败只记录日志，不影响后续条目；有成功项时调用一次 on_refresh。
    """

    ready_ids = [item.id for item in workspace.triples if item.is_ready]
    success_count = 0
    for triple_id in ready_ids:
        try:
            await upload_triple(workspace, triple_id, service)
        except GuideIngestError as exc:
            LOGGER.error("三元组 %s 上传失败: %s", triple_id, exc)
            continue
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("三元组 %s 上传时发生未预期的异常：%s", triple_id, exc)
            continue
        success_count += 1

    if success_count:
        LOGGER.info("%d 个三元组上传成功", success_count)
        if on_refresh:
            on_refresh()
    return success_count


def _band_reporter(progress: MonotonicProgress, band: ProgressBand) -> Callable[[UploadProgress], None]:
    def report(event: UploadProgress) -> None:
        progress.report(band.scale(event.percentage))

    return report


def _precondition_message(triple) -> str:
    missing = [
        label
        for label, value in (
            ("图片", triple.raster_image),
            ("XML", triple.derived_drawable),
            ("SVG", triple.vector_source),
        )
        if value is None
    ]
    if missing:
        return f"缺少文件: {', '.join(missing)}"
    if triple.name_mismatch:
        return "SVG 与图片的文件名不一致"
    return f"当前状态不允许上传: {triple.status}"
