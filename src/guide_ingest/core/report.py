"""报告生成工具。"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable

from guide_ingest.core.models import ItemOutcome

HEADER = ["base_name", "status", "guide_id", "category_id", "message"]


def write_csv_report(outcomes: Iterable[ItemOutcome], output_dir: Path, filename: str) -> Path:
    """将批量登记结果写入 CSV 报告。"""

    output_dir.mkdir(parents=True, exist_ok=True)
    report_path = output_dir / filename
    with report_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(HEADER)
        for record in outcomes:
            writer.writerow(
                [
                    record.base_name,
                    record.status,
                    _format_optional(record.guide_id),
                    _format_optional(record.category_id),
                    record.message or "",
                ]
            )
    return report_path


def _format_optional(value: int | None) -> str:
    if value is None:
        return ""
    return str(value)
