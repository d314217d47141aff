"""批量登记：逐个转换并上传配对好的文件，汇总成功与失败数量。"""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, Sequence

from guide_ingest.core.config import BatchConfig, MatchConfig
from guide_ingest.core.exceptions import GuideIngestError, InvalidConfigurationError
from guide_ingest.core.models import BatchResult, Category, ItemOutcome, MatchedPair, MatchResult, SourceFile
from guide_ingest.core.progress import BatchRunState, overall_percentage
from guide_ingest.core.report import write_csv_report
from guide_ingest.core.scanner import filter_batch_candidates, match_files
from guide_ingest.processing.converter import VectorConverter, convert_vector_file
from guide_ingest.processing.orchestrator import RefreshCallback, upload_guide_triple
from guide_ingest.services.base import GuideService

LOGGER = logging.getLogger(__name__)

BatchProgressCallback = Optional[Callable[[BatchRunState], None]]


class CategoryPolicy(ABC):
    """为批量条目选择子分类。"""

    @abstractmethod
    def choose(self, pair: MatchedPair, categories: Sequence[Category], fallback: int) -> int:
        """返回子分类 ID；没有可选分类时返回 fallback。"""


class FirstCategoryPolicy(CategoryPolicy):
    """始终使用排序后的第一个子分类。"""

    def choose(self, pair: MatchedPair, categories: Sequence[Category], fallback: int) -> int:
        return categories[0].id if categories else fallback


class RandomCategoryPolicy(CategoryPolicy):
    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or random.Random()

    def choose(self, pair: MatchedPair, categories: Sequence[Category], fallback: int) -> int:
        if not categories:
            return fallback
        return self.rng.choice(list(categories)).id


class FixedCategoryPolicy(CategoryPolicy):
    def __init__(self, category_id: int) -> None:
        self.category_id = category_id

    def choose(self, pair: MatchedPair, categories: Sequence[Category], fallback: int) -> int:
        return self.category_id


def build_category_policy(name: str, category_id: Optional[int] = None, seed: Optional[int] = None) -> CategoryPolicy:
    """根据名称创建分类策略：first | random | fixed。"""

    if name == "first":
        return FirstCategoryPolicy()
    if name == "random":
        return RandomCategoryPolicy(random.Random(seed))
    if name == "fixed":
        if category_id is None:
            raise InvalidConfigurationError("fixed 策略需要指定分类 ID")
        return FixedCategoryPolicy(category_id)
    raise InvalidConfigurationError(f"未知的分类策略: {name}")


class BatchDriver:
    """按顺序处理配对列表，单项失败不影响后续条目。"""

    def __init__(
        self,
        service: GuideService,
        *,
        converter: VectorConverter = convert_vector_file,
        category_policy: Optional[CategoryPolicy] = None,
        config: Optional[BatchConfig] = None,
        progress_callback: BatchProgressCallback = None,
        on_refresh: RefreshCallback = None,
    ) -> None:
        self.service = service
        self.converter = converter
        self.category_policy = category_policy or FirstCategoryPolicy()
        self.config = config or BatchConfig()
        self.progress_callback = progress_callback
        self.on_refresh = on_refresh
        self.state = BatchRunState()

    async def run(
        self,
        pairs: Sequence[MatchedPair],
        categories: Optional[Sequence[Category]] = None,
        report_dir: Optional[Path] = None,
    ) -> BatchResult:
        """逐个处理配对，返回成功与失败的汇总结果。"""

        result = BatchResult()
        total = len(pairs)
        if total == 0:
            LOGGER.warning("没有配对成功的文件")
            return result

        if categories is None:
            categories = await self._load_categories()

        self._set_state(BatchRunState(is_running=True, total=total, message="开始批量登记"))

        for index, pair in enumerate(pairs):
            self._set_state(
                BatchRunState(
                    is_running=True,
                    overall_percentage=overall_percentage(index, 0.0, total),
                    current_index=index + 1,
                    total=total,
                    success_count=result.success_count,
                    failure_count=result.failure_count,
                    message=f"处理 {pair.base_name}",
                )
            )
            outcome = await self._process_pair(pair, index, total, categories, result)
            if outcome.status == "registered":
                result.succeeded.append(outcome)
                LOGGER.info("%s 登记完成", pair.base_name)
            else:
                result.failed.append(outcome)
                LOGGER.error("%s 登记失败: %s", pair.base_name, outcome.message)

        self._set_state(
            BatchRunState(
                success_count=result.success_count,
                failure_count=result.failure_count,
                message="批量登记结束",
            )
        )
        LOGGER.info("批量登记结束：成功 %d，失败 %d", result.success_count, result.failure_count)

        if report_dir is not None and self.config.report_filename:
            try:
                write_csv_report(result.all_outcomes(), report_dir, self.config.report_filename)
            except OSError as exc:
                LOGGER.error("写入报告失败：%s", exc)

        if result.all_failed:
            LOGGER.error("所有文件上传均失败")
        elif self.on_refresh:
            self.on_refresh()
        return result

    async def _process_pair(
        self,
        pair: MatchedPair,
        index: int,
        total: int,
        categories: Sequence[Category],
        result: BatchResult,
    ) -> ItemOutcome:
        category_id = self.category_policy.choose(pair, categories, self.config.fallback_category_id)

        def on_item_progress(value: float) -> None:
            self._set_state(
                BatchRunState(
                    is_running=True,
                    overall_percentage=overall_percentage(index, value / 100.0, total),
                    current_index=index + 1,
                    total=total,
                    success_count=result.success_count,
                    failure_count=result.failure_count,
                )
            )

        try:
            drawable = await self.converter(pair.vector_file)
            guide = await upload_guide_triple(
                self.service,
                raster_image=pair.raster_file,
                derived_drawable=drawable,
                vector_source=pair.vector_file,
                base_name=pair.base_name,
                category_id=category_id,
                description=self.config.describe(pair.base_name),
                tags=self.config.default_tags,
                on_progress=on_item_progress,
            )
        except GuideIngestError as exc:
            return self._failed(pair, category_id, exc)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("处理 %s 时发生未预期的异常：%s", pair.base_name, exc)
            return self._failed(pair, category_id, exc)

        return ItemOutcome(
            base_name=pair.base_name,
            status="registered",
            guide_id=guide.guide_id,
            category_id=category_id,
        )

    @staticmethod
    def _failed(pair: MatchedPair, category_id: int, exc: Exception) -> ItemOutcome:
        return ItemOutcome(
            base_name=pair.base_name,
            status="failed",
            category_id=category_id,
            message=str(exc) or type(exc).__name__,
        )

    async def run_selection(
        self, selection: "BatchSelection", report_dir: Optional[Path] = None
    ) -> BatchResult:
        """处理当前选择中的配对，结束后清空选择。"""

        try:
            return await self.run(selection.match.pairs, report_dir=report_dir)
        finally:
            selection.clear()

    async def _load_categories(self) -> Sequence[Category]:
        try:
            return await self.service.list_categories()
        except GuideIngestError as exc:
            LOGGER.warning("子分类加载失败，使用默认分类 %d: %s", self.config.fallback_category_id, exc)
            return ()

    def _set_state(self, state: BatchRunState) -> None:
        self.state = state
        if self.progress_callback:
            self.progress_callback(state)


class BatchSelection:
    """批量模式下当前选择的 SVG 与图片，任一列表变化都会重新配对。"""

    def __init__(self, config: Optional[MatchConfig] = None) -> None:
        self.config = config or MatchConfig()
        self._vector_pattern, self._raster_pattern = self.config.compiled()
        self.vector_files: list[SourceFile] = []
        self.raster_files: list[SourceFile] = []
        self.match = MatchResult(pairs=(), unmatched=())

    def select_vectors(self, files: Sequence[SourceFile]) -> MatchResult:
        self.vector_files = filter_batch_candidates(files, self._vector_pattern)
        return self._rematch()

    def select_rasters(self, files: Sequence[SourceFile]) -> MatchResult:
        self.raster_files = filter_batch_candidates(files, self._raster_pattern)
        return self._rematch()

    def clear(self) -> None:
        self.vector_files = []
        self.raster_files = []
        self.match = MatchResult(pairs=(), unmatched=())

    def _rematch(self) -> MatchResult:
        self.match = match_files(self.vector_files, self.raster_files)
        return self.match
