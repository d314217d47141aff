"""文件三元组集合的状态更新。

集合是 FileTriple 的元组，所有更新函数都按 id 定位条目并返回新的元组，
不修改原集合。TripleWorkspace 持有当前集合并负责异步的 SVG 转换。
"""

from __future__ import annotations

import logging
from dataclasses import replace
from itertools import count
from typing import Callable, Optional

from guide_ingest.core.exceptions import ConversionError, UploadPreconditionError
from guide_ingest.core.models import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_UPLOADING,
    FileTriple,
    GuideRecord,
    SourceFile,
)
from guide_ingest.core.scanner import validate_name_match
from guide_ingest.processing.converter import VectorConverter, convert_vector_file

LOGGER = logging.getLogger(__name__)

Triples = tuple[FileTriple, ...]

_ids = count(1)


def new_triple(category_id: int = 1, triple_id: Optional[str] = None) -> FileTriple:
    """创建一个空的三元组，id 只在当前会话内有效。"""

    return FileTriple(id=triple_id or f"triple-{next(_ids)}", category_id=category_id)


def add_triple(triples: Triples, triple: FileTriple) -> Triples:
    return (*triples, triple)


def remove_triple(triples: Triples, triple_id: str) -> Triples:
    return tuple(item for item in triples if item.id != triple_id)


def get_triple(triples: Triples, triple_id: str) -> FileTriple:
    for item in triples:
        if item.id == triple_id:
            return item
    raise KeyError(triple_id)


def _update(triples: Triples, triple_id: str, change: Callable[[FileTriple], FileTriple]) -> Triples:
    get_triple(triples, triple_id)
    return tuple(change(item) if item.id == triple_id else item for item in triples)


def _update_editable(triples: Triples, triple_id: str, change: Callable[[FileTriple], FileTriple]) -> Triples:
    """与 _update 相同，但上传中或已结束的条目保持不变。"""

    def guarded(item: FileTriple) -> FileTriple:
        if item.is_locked:
            LOGGER.debug("三元组 %s 处于 %s 状态，忽略修改", item.id, item.status)
            return item
        return change(item)

    return _update(triples, triple_id, guarded)


def _with_names(triple: FileTriple) -> FileTriple:
    is_valid, base_name = validate_name_match(triple.vector_source, triple.raster_image)
    return replace(triple, base_name=base_name, name_mismatch=not is_valid)


def select_vector(triples: Triples, triple_id: str, vector: SourceFile, drawable: SourceFile) -> Triples:
    """同时设置 SVG 与由它转换出的 XML。"""

    return _update_editable(
        triples,
        triple_id,
        lambda item: _with_names(replace(item, vector_source=vector, derived_drawable=drawable)),
    )


def clear_vector(triples: Triples, triple_id: str) -> Triples:
    """移除 SVG 时一并移除派生的 XML。"""

    return _update_editable(
        triples,
        triple_id,
        lambda item: _with_names(replace(item, vector_source=None, derived_drawable=None)),
    )


def select_raster(triples: Triples, triple_id: str, raster: SourceFile) -> Triples:
    return _update_editable(triples, triple_id, lambda item: _with_names(replace(item, raster_image=raster)))


def clear_raster(triples: Triples, triple_id: str) -> Triples:
    return _update_editable(triples, triple_id, lambda item: _with_names(replace(item, raster_image=None)))


def set_category(triples: Triples, triple_id: str, category_id: int) -> Triples:
    return _update_editable(triples, triple_id, lambda item: replace(item, category_id=category_id))


def set_description(triples: Triples, triple_id: str, description: str) -> Triples:
    return _update_editable(triples, triple_id, lambda item: replace(item, description=description))


def set_tag_draft(triples: Triples, triple_id: str, draft: str) -> Triples:
    return _update_editable(triples, triple_id, lambda item: replace(item, tag_draft=draft))


def set_composing(triples: Triples, triple_id: str, composing: bool) -> Triples:
    return _update_editable(triples, triple_id, lambda item: replace(item, is_composing=composing))


def commit_tag_draft(triples: Triples, triple_id: str) -> Triples:
    """把输入框中的内容提交为标签。

    输入法组合输入期间不提交；重复的标签只清空输入框。
    """

    def change(item: FileTriple) -> FileTriple:
        if item.is_composing:
            return item
        tag = item.tag_draft.strip()
        if not tag:
            return item
        if tag in item.tags:
            return replace(item, tag_draft="")
        return replace(item, tags=(*item.tags, tag), tag_draft="")

    return _update_editable(triples, triple_id, change)


def remove_tag(triples: Triples, triple_id: str, index: int) -> Triples:
    return _update_editable(
        triples,
        triple_id,
        lambda item: replace(item, tags=tuple(tag for pos, tag in enumerate(item.tags) if pos != index)),
    )


def pop_last_tag(triples: Triples, triple_id: str) -> Triples:
    """输入框为空时删除最后一个标签（退格键行为）。"""

    def change(item: FileTriple) -> FileTriple:
        if item.tag_draft or not item.tags:
            return item
        return replace(item, tags=item.tags[:-1])

    return _update_editable(triples, triple_id, change)


def begin_upload(triples: Triples, triple_id: str) -> Triples:
    return _update(
        triples,
        triple_id,
        lambda item: replace(item, status=STATUS_UPLOADING, progress=0.0, error=None),
    )


def update_progress(triples: Triples, triple_id: str, progress: float) -> Triples:
    return _update(triples, triple_id, lambda item: replace(item, progress=progress))


def complete_upload(triples: Triples, triple_id: str, guide: GuideRecord) -> Triples:
    return _update(
        triples,
        triple_id,
        lambda item: replace(item, status=STATUS_COMPLETED, progress=100.0, guide=guide),
    )


def fail_upload(triples: Triples, triple_id: str, message: str) -> Triples:
    return _update(triples, triple_id, lambda item: replace(item, status=STATUS_FAILED, error=message))


class TripleWorkspace:
    """持有当前的三元组集合，每次变更都替换为新的元组。"""

    def __init__(
        self,
        triples: Triples = (),
        converter: VectorConverter = convert_vector_file,
        listener: Optional[Callable[[Triples], None]] = None,
    ) -> None:
        self.triples: Triples = tuple(triples)
        self.converter = converter
        self.listener = listener

    def apply(self, update: Callable[..., Triples], *args: object) -> Triples:
        self.triples = update(self.triples, *args)
        if self.listener:
            self.listener(self.triples)
        return self.triples

    def get(self, triple_id: str) -> FileTriple:
        return get_triple(self.triples, triple_id)

    def add(self, category_id: int = 1) -> FileTriple:
        triple = new_triple(category_id)
        self.apply(add_triple, triple)
        return triple

    async def attach_vector(self, triple_id: str, vector: SourceFile) -> FileTriple:
        """选择新的 SVG：先转换，成功后再同时更新 SVG 与 XML。

        转换失败时抛出 ConversionError，原有选择保持不变；
        上传中或已结束的条目抛出 UploadPreconditionError，且不会触发转换。
        """

        current = get_triple(self.triples, triple_id)
        if current.is_locked:
            raise UploadPreconditionError(f"三元组 {triple_id} 处于 {current.status} 状态，不能更换 SVG")
        try:
            drawable = await self.converter(vector)
        except ConversionError:
            LOGGER.error("SVG 转换失败，保留原有选择: %s", vector.name)
            raise
        self.apply(select_vector, triple_id, vector, drawable)
        return self.get(triple_id)
