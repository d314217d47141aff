"""认证令牌的获取方式。

令牌只由服务客户端在发起接口请求时读取，上传到预签名地址时不附带。
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

LOGGER = logging.getLogger(__name__)

TOKEN_ENV = "GUIDE_INGEST_TOKEN"
BEARER_PREFIX = "Bearer "
TOKEN_FILE_MODE = 0o600


class CredentialProvider:
    """令牌提供者基类，默认不提供令牌。"""

    def get_token(self) -> Optional[str]:
        return None


class StaticCredentialProvider(CredentialProvider):
    def __init__(self, token: Optional[str]) -> None:
        self._token = (token or "").strip() or None

    def get_token(self) -> Optional[str]:
        return self._token


class EnvCredentialProvider(CredentialProvider):
    """从环境变量读取令牌，每次请求时重新读取。"""

    def __init__(self, variable: str = TOKEN_ENV) -> None:
        self.variable = variable

    def get_token(self) -> Optional[str]:
        return (os.environ.get(self.variable) or "").strip() or None


class FileCredentialProvider(CredentialProvider):
    """从本地文件读取令牌，并支持保存与清除。"""

    def __init__(self, path: Path) -> None:
        self.path = path

    def get_token(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8").strip() or None

    def save(self, token: str) -> None:
        """保存令牌，文件权限限制为仅当前用户可读写。"""

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, TOKEN_FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(token.strip())
        # 已存在的文件不会被 os.open 改变权限
        self.path.chmod(TOKEN_FILE_MODE)
        LOGGER.info("令牌已保存到 %s", self.path)

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            LOGGER.info("令牌已删除: %s", self.path)


def bearer_header(token: Optional[str]) -> dict[str, str]:
    """生成 Authorization 头；令牌已带 Bearer 前缀时不重复添加。"""

    if not token:
        return {}
    value = token if token.startswith(BEARER_PREFIX) else f"{BEARER_PREFIX}{token}"
    return {"Authorization": value}
