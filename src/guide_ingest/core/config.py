"""服务与批处理任务的配置模型。"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Optional, Pattern, Tuple

from guide_ingest.core.exceptions import InvalidConfigurationError

API_BASE_URL_ENV = "GUIDE_INGEST_API_BASE_URL"

BATCH_VECTOR_PATTERN = r"^image_\d+\.svg$"
BATCH_RASTER_PATTERN = r"^image_\d+\.(png|jpg|jpeg)$"


@dataclass(slots=True)
class ServiceConfig:
    """指南服务接口相关配置。"""

    base_url: str
    request_timeout: float = 10.0
    transfer_timeout: Optional[float] = None  # None 表示不限制上传耗时
    chunk_size: int = 64 * 1024

    def __post_init__(self) -> None:
        if not self.base_url:
            raise InvalidConfigurationError("服务地址不能为空")
        if not self.base_url.startswith(("http://", "https://")):
            raise InvalidConfigurationError(f"服务地址必须以 http:// 或 https:// 开头: {self.base_url}")
        self.base_url = self.base_url.rstrip("/")
        if self.request_timeout <= 0:
            raise InvalidConfigurationError("请求超时时间必须大于 0")
        if self.chunk_size <= 0:
            raise InvalidConfigurationError("上传分块大小必须大于 0")

    @classmethod
    def from_env(cls, base_url: Optional[str] = None) -> "ServiceConfig":
        """优先使用显式参数，否则读取环境变量中的服务地址。"""

        resolved = base_url or os.environ.get(API_BASE_URL_ENV, "")
        if not resolved:
            raise InvalidConfigurationError(f"未指定服务地址，请设置 {API_BASE_URL_ENV} 或传入 --api-base")
        return cls(base_url=resolved)


@dataclass(slots=True)
class MatchConfig:
    """批量匹配时的文件名规则。"""

    vector_pattern: str = BATCH_VECTOR_PATTERN
    raster_pattern: str = BATCH_RASTER_PATTERN
    allow_recursive: bool = False

    def compiled(self) -> Tuple[Pattern[str], Pattern[str]]:
        """返回编译后的 (矢量, 位图) 正则，忽略大小写。"""

        try:
            return (
                re.compile(self.vector_pattern, re.IGNORECASE),
                re.compile(self.raster_pattern, re.IGNORECASE),
            )
        except re.error as exc:
            raise InvalidConfigurationError(f"无效的文件名规则: {exc}") from exc


@dataclass(slots=True)
class BatchConfig:
    """批量登记任务的配置集合。"""

    description_template: str = "批量登记的 {base_name} 指南"
    default_tags: Tuple[str, ...] = field(default_factory=lambda: ("批量登记", "自动生成"))
    fallback_category_id: int = 1
    report_filename: Optional[str] = None

    def describe(self, base_name: str) -> str:
        """根据模板生成描述文本。"""

        return self.description_template.format(base_name=base_name)
