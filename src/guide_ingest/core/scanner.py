"""文件扫描、筛选与按文件名配对逻辑。"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, Iterator, Optional, Pattern, Sequence

from guide_ingest.core.config import MatchConfig
from guide_ingest.core.models import MatchedPair, MatchResult, SourceFile

VECTOR_EXTENSIONS = {".svg"}
RASTER_EXTENSIONS = {".png", ".jpg", ".jpeg"}

_VECTOR_SUFFIX_RE = re.compile(r"\.svg$", re.IGNORECASE)
_RASTER_SUFFIX_RE = re.compile(r"\.(png|jpg|jpeg)$", re.IGNORECASE)


def strip_vector_extension(name: str) -> str:
    """去掉 .svg 扩展名（不区分大小写），其余部分原样保留。"""

    return _VECTOR_SUFFIX_RE.sub("", name)


def strip_raster_extension(name: str) -> str:
    return _RASTER_SUFFIX_RE.sub("", name)


def validate_name_match(
    vector_file: Optional[SourceFile], raster_file: Optional[SourceFile]
) -> tuple[bool, str]:
    """校验单组文件名是否一致，返回 (是否一致, 基础文件名)。

    任一文件缺失时视为一致，但基础文件名为空。
    """

    if vector_file is None or raster_file is None:
        return True, ""

    vector_name = strip_vector_extension(vector_file.name)
    raster_name = strip_raster_extension(raster_file.name)
    if vector_name == raster_name:
        return True, vector_name
    return False, ""


def filter_batch_candidates(
    files: Iterable[SourceFile], pattern: Pattern[str]
) -> list[SourceFile]:
    """只保留文件名符合批量规则（如 image_001.svg）的文件。"""

    return [item for item in files if pattern.match(item.name)]


def match_files(vector_files: Sequence[SourceFile], raster_files: Sequence[SourceFile]) -> MatchResult:
    """按去掉扩展名后的文件名配对，返回配对结果与剩余文件。

    以 SVG 为基准依次查找；同名 SVG 重复时先到先得，后来者进入未匹配列表。
    """

    pairs: list[MatchedPair] = []
    unmatched: list[SourceFile] = []
    consumed: set[int] = set()

    for vector_file in vector_files:
        base_name = strip_vector_extension(vector_file.name)
        match_index = _find_raster(base_name, raster_files, consumed)
        if match_index is None:
            unmatched.append(vector_file)
            continue
        consumed.add(match_index)
        pairs.append(
            MatchedPair(base_name=base_name, vector_file=vector_file, raster_file=raster_files[match_index])
        )

    for index, raster_file in enumerate(raster_files):
        if index not in consumed:
            unmatched.append(raster_file)

    return MatchResult(pairs=tuple(pairs), unmatched=tuple(unmatched))


def match_batch_files(
    vector_files: Sequence[SourceFile],
    raster_files: Sequence[SourceFile],
    config: Optional[MatchConfig] = None,
) -> MatchResult:
    """批量模式：先按 image_<数字> 规则筛选，再配对。"""

    vector_pattern, raster_pattern = (config or MatchConfig()).compiled()
    return match_files(
        filter_batch_candidates(vector_files, vector_pattern),
        filter_batch_candidates(raster_files, raster_pattern),
    )


def _find_raster(base_name: str, raster_files: Sequence[SourceFile], consumed: set[int]) -> Optional[int]:
    for index, raster_file in enumerate(raster_files):
        if index in consumed:
            continue
        if strip_raster_extension(raster_file.name) == base_name:
            return index
    return None


def _iter_candidate_files(path: Path, recursive: bool) -> Iterator[Path]:
    """遍历目录下的文件，跳过隐藏文件（如 macOS 生成的 ._ 副本）。"""

    if path.is_file():
        yield path
    elif path.is_dir():
        pattern = "**/*" if recursive else "*"
        yield from (item for item in path.glob(pattern) if item.is_file() and not item.name.startswith("."))


def collect_files(sources: Iterable[Path], extensions: set[str], recursive: bool = False) -> list[SourceFile]:
    """扫描文件或目录，返回扩展名匹配的文件列表（按文件名排序）。"""

    collected: list[SourceFile] = []
    seen_paths: set[Path] = set()

    for root in sources:
        for candidate in _iter_candidate_files(root.resolve(), recursive):
            if candidate in seen_paths:
                continue
            seen_paths.add(candidate)
            if candidate.suffix.lower() not in extensions:
                continue
            collected.append(SourceFile.from_path(candidate))

    collected.sort(key=lambda item: item.name.lower())
    return collected
