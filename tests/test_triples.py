"""三元组状态更新函数与工作区测试。"""

from __future__ import annotations

import asyncio

import pytest
from conftest import drawable_source, raster_source, svg_source

from guide_ingest.core.exceptions import ConversionError, UploadPreconditionError
from guide_ingest.core.models import GuideRecord, SourceFile
from guide_ingest.processing.triples import (
    TripleWorkspace,
    add_triple,
    begin_upload,
    clear_raster,
    clear_vector,
    commit_tag_draft,
    complete_upload,
    fail_upload,
    get_triple,
    new_triple,
    pop_last_tag,
    remove_tag,
    remove_triple,
    select_raster,
    select_vector,
    set_category,
    set_composing,
    set_description,
    set_tag_draft,
)


class CountingConverter:
    def __init__(self, fail: bool = False) -> None:
        self.calls: list[str] = []
        self.fail = fail

    async def __call__(self, vector: SourceFile) -> SourceFile:
        self.calls.append(vector.name)
        if self.fail:
            raise ConversionError("SVG 解析失败")
        return drawable_source(vector.name.rsplit(".", 1)[0] + ".xml")


def _single(triple_id: str = "t1"):
    return add_triple((), new_triple(triple_id=triple_id))


def test_updates_return_new_collections() -> None:
    before = _single()
    after = select_raster(before, "t1", raster_source("cat.png"))

    assert before is not after
    assert get_triple(before, "t1").raster_image is None
    assert get_triple(after, "t1").raster_image.name == "cat.png"


def test_name_match_example() -> None:
    triples = select_raster(_single(), "t1", raster_source("cat.png"))
    triples = select_vector(triples, "t1", svg_source("cat.svg"), drawable_source("cat.xml"))

    triple = get_triple(triples, "t1")
    assert triple.name_mismatch is False
    assert triple.base_name == "cat"
    assert triple.derived_drawable.name == "cat.xml"
    assert triple.is_ready


def test_name_mismatch_blocks_readiness() -> None:
    triples = select_raster(_single(), "t1", raster_source("dog.png"))
    triples = select_vector(triples, "t1", svg_source("cat.svg"), drawable_source("cat.xml"))

    triple = get_triple(triples, "t1")
    assert triple.name_mismatch is True
    assert triple.base_name == ""
    assert not triple.is_ready

    # 移除图片后不再有冲突
    cleared = get_triple(clear_raster(triples, "t1"), "t1")
    assert cleared.name_mismatch is False
    assert cleared.base_name == ""


def test_clearing_vector_clears_drawable() -> None:
    triples = select_vector(_single(), "t1", svg_source("cat.svg"), drawable_source("cat.xml"))
    triples = select_raster(triples, "t1", raster_source("cat.png"))

    triple = get_triple(clear_vector(triples, "t1"), "t1")

    assert triple.vector_source is None
    assert triple.derived_drawable is None
    assert triple.raster_image is not None
    assert triple.base_name == ""


def test_attach_vector_converts_exactly_once() -> None:
    converter = CountingConverter()
    workspace = TripleWorkspace(converter=converter)
    triple = workspace.add()

    asyncio.run(workspace.attach_vector(triple.id, svg_source("cat.svg")))
    asyncio.run(workspace.attach_vector(triple.id, svg_source("dog.svg")))

    assert converter.calls == ["cat.svg", "dog.svg"]
    current = workspace.get(triple.id)
    assert current.vector_source.name == "dog.svg"
    assert current.derived_drawable.name == "dog.xml"


def test_conversion_failure_keeps_previous_selection() -> None:
    converter = CountingConverter()
    workspace = TripleWorkspace(converter=converter)
    triple = workspace.add()
    asyncio.run(workspace.attach_vector(triple.id, svg_source("cat.svg")))
    before = workspace.triples

    converter.fail = True
    with pytest.raises(ConversionError):
        asyncio.run(workspace.attach_vector(triple.id, svg_source("broken.svg")))

    assert workspace.triples is before
    assert workspace.get(triple.id).vector_source.name == "cat.svg"


def test_workspace_notifies_listener() -> None:
    seen = []
    workspace = TripleWorkspace(listener=seen.append)

    triple = workspace.add()
    workspace.apply(select_raster, triple.id, raster_source("cat.png"))

    assert len(seen) == 2
    assert seen[-1] is workspace.triples


def test_commit_tag_draft_rules() -> None:
    triples = set_tag_draft(_single(), "t1", "  tasty  ")
    triples = commit_tag_draft(triples, "t1")
    assert get_triple(triples, "t1").tags == ("tasty",)
    assert get_triple(triples, "t1").tag_draft == ""

    # 重复标签只清空输入
    triples = commit_tag_draft(set_tag_draft(triples, "t1", "tasty"), "t1")
    assert get_triple(triples, "t1").tags == ("tasty",)
    assert get_triple(triples, "t1").tag_draft == ""

    # 空白输入不产生标签
    triples = commit_tag_draft(set_tag_draft(triples, "t1", "   "), "t1")
    assert get_triple(triples, "t1").tags == ("tasty",)


def test_composition_suppresses_commit() -> None:
    triples = set_composing(set_tag_draft(_single(), "t1", "맛있"), "t1", True)

    triples = commit_tag_draft(triples, "t1")
    assert get_triple(triples, "t1").tags == ()
    assert get_triple(triples, "t1").tag_draft == "맛있"

    triples = commit_tag_draft(set_composing(triples, "t1", False), "t1")
    assert get_triple(triples, "t1").tags == ("맛있",)


def test_tag_removal() -> None:
    triples = _single()
    for tag in ("a", "b", "c"):
        triples = commit_tag_draft(set_tag_draft(triples, "t1", tag), "t1")

    triples = remove_tag(triples, "t1", 1)
    assert get_triple(triples, "t1").tags == ("a", "c")

    # 输入框有内容时退格不删除标签
    untouched = pop_last_tag(set_tag_draft(triples, "t1", "x"), "t1")
    assert get_triple(untouched, "t1").tags == ("a", "c")

    triples = pop_last_tag(triples, "t1")
    assert get_triple(triples, "t1").tags == ("a",)


def test_unknown_id_and_removal() -> None:
    triples = add_triple(_single("t1"), new_triple(triple_id="t2"))

    assert [item.id for item in remove_triple(triples, "t1")] == ["t2"]
    with pytest.raises(KeyError):
        select_raster(triples, "missing", raster_source("cat.png"))


def test_metadata_setters_leave_files_alone() -> None:
    triples = select_raster(_single(), "t1", raster_source("cat.png"))

    triples = set_description(set_category(triples, "t1", 9), "t1", "orange cat")

    triple = get_triple(triples, "t1")
    assert triple.category_id == 9
    assert triple.description == "orange cat"
    assert triple.raster_image.name == "cat.png"


def test_finished_triples_ignore_edits() -> None:
    triples = select_vector(_single(), "t1", svg_source("cat.svg"), drawable_source("cat.xml"))
    triples = select_raster(triples, "t1", raster_source("cat.png"))
    guide = GuideRecord(guide_id=5, file_name="cat", vector_key="svgs/cat.svg", raster_key="images/cat.png")
    triples = complete_upload(begin_upload(triples, "t1"), "t1", guide)

    edited = select_raster(triples, "t1", raster_source("dog.png"))
    edited = clear_vector(edited, "t1")
    edited = set_description(commit_tag_draft(set_tag_draft(edited, "t1", "late"), "t1"), "t1", "changed")

    assert get_triple(edited, "t1") == get_triple(triples, "t1")

    failed = fail_upload(begin_upload(_single(), "t1"), "t1", "网络错误")
    assert get_triple(select_raster(failed, "t1", raster_source("cat.png")), "t1").raster_image is None


def test_attach_vector_rejects_locked_triple() -> None:
    converter = CountingConverter()
    workspace = TripleWorkspace(converter=converter)
    triple = workspace.add()
    workspace.apply(begin_upload, triple.id)

    with pytest.raises(UploadPreconditionError):
        asyncio.run(workspace.attach_vector(triple.id, svg_source("cat.svg")))

    assert converter.calls == []
    assert workspace.get(triple.id).vector_source is None
