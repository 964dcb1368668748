"""网络工具 — URL 校验、经代理 opener 的下载与校验和"""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from pyodide_prep.core.exceptions import IntegrityError, NetworkError, ValidationError

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset(("http", "https"))

DEFAULT_TIMEOUT = 60


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


def _open(
    url: str,
    opener: urllib.request.OpenerDirector,
    timeout: float,
) -> Any:
    validate_url_scheme(url, context="fetch")
    try:
        return opener.open(url, timeout=timeout)  # nosec B310
    except (urllib.error.HTTPError, urllib.error.URLError, OSError) as e:
        raise NetworkError(f"请求失败: {url} - {e}") from e


def fetch_bytes(
    url: str,
    opener: urllib.request.OpenerDirector,
    timeout: float = DEFAULT_TIMEOUT,
) -> bytes:
    """读取 URL 全部内容"""
    logger.debug("GET %s", url)
    resp = _open(url, opener, timeout)
    try:
        with resp:
            return resp.read()
    except OSError as e:
        raise NetworkError(f"读取响应失败: {url} - {e}") from e


def fetch_json(
    url: str,
    opener: urllib.request.OpenerDirector,
    timeout: float = DEFAULT_TIMEOUT,
) -> Any:
    data = fetch_bytes(url, opener, timeout)
    try:
        return json.loads(data)
    except ValueError as e:
        raise NetworkError(f"响应不是合法 JSON: {url} - {e}") from e


def download(
    url: str,
    dest: Path,
    opener: urllib.request.OpenerDirector,
    timeout: float = DEFAULT_TIMEOUT,
) -> Path:
    """流式下载到 dest，失败时删除残留文件"""
    dest.parent.mkdir(parents=True, exist_ok=True)
    logger.info("  下载: %s", url)
    resp = _open(url, opener, timeout)
    try:
        with resp, open(dest, "wb") as f:
            shutil.copyfileobj(resp, f)
    except OSError as e:
        dest.unlink(missing_ok=True)
        raise NetworkError(f"下载失败: {url} - {e}") from e
    logger.info("  已保存: %s", dest)
    return dest


def sha256_file(path: Path) -> str:
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def verify_checksum(path: Path, expected: str) -> None:
    actual = sha256_file(path)
    if actual != expected:
        raise IntegrityError(
            f"校验和不匹配 {path}: 期望 {expected}, 实际 {actual}",
        )
    logger.debug("  校验和通过: %s", path.name)
