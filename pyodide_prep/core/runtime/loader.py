"""Pyodide 运行时加载器

运行时由发行目录（npm 包 node_modules/pyodide）中的 pyodide-lock.json 描述；
发行目录缺少锁文件时按 package.json 中的版本从 CDN 拉取。
load_package() 把锁文件中的包（含依赖）下载进包缓存目录，
已在缓存中且校验和一致的文件直接复用。

用法:
    runtime = load_runtime("node_modules/pyodide", "static/pyodide", proxy)
    runtime.load_package("micropip")
    micropip = runtime.pyimport("micropip")
"""

from __future__ import annotations

import json
import logging
import urllib.request
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pyodide_prep.core.exceptions import (
    IntegrityError,
    PackageNotFoundError,
    PrepError,
    RuntimeLoadError,
)
from pyodide_prep.core.proxy import ProxyConfig
from pyodide_prep.core.runtime.models import (
    LOCK_FILE_NAME,
    LockPackage,
    RuntimeInfo,
    normalize_name,
)
from pyodide_prep.utils.net import DEFAULT_TIMEOUT, download, fetch_json, sha256_file, verify_checksum

if TYPE_CHECKING:
    from pyodide_prep.core.runtime.installer import Installer

logger = logging.getLogger(__name__)

DEFAULT_CDN_URL = "https://cdn.jsdelivr.net/pyodide"
DEFAULT_INDEX_URL = "https://pypi.org/pypi"


class PyodideRuntime:
    """绑定到包缓存目录的 Pyodide 运行时

    进程内单例使用：同一个包在一次运行中最多加载一次。
    """

    def __init__(
        self,
        lock_data: dict[str, Any],
        cache_dir: Path,
        opener: urllib.request.OpenerDirector,
        *,
        cdn_url: str = DEFAULT_CDN_URL,
        index_url: str = DEFAULT_INDEX_URL,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.lock_data = lock_data
        self.info = RuntimeInfo.from_dict(lock_data.get("info") or {})
        self.packages: dict[str, LockPackage] = {
            normalize_name(key): LockPackage.from_dict(entry)
            for key, entry in (lock_data.get("packages") or {}).items()
        }
        self.cache_dir = cache_dir
        self.opener = opener
        self.cdn_url = cdn_url
        self.index_url = index_url
        self.timeout = timeout
        self._loaded: list[str] = []
        self._installer: Installer | None = None

    @property
    def version(self) -> str:
        return self.info.version

    @property
    def base_url(self) -> str:
        return f"{self.cdn_url.rstrip('/')}/v{self.version}/full/"

    @property
    def loaded_packages(self) -> list[str]:
        return list(self._loaded)

    def load_package(self, name: str) -> list[str]:
        """加载锁文件中的包及其依赖，返回本次新加载的包名（依赖在前）"""
        key = normalize_name(name)
        if key not in self.packages:
            raise PackageNotFoundError(f"'{name}' 不在 Pyodide {self.version} 的锁文件中")
        newly: list[str] = []
        self._load(key, newly, set())
        if newly:
            logger.info("已加载运行时包: %s", ", ".join(newly))
        return newly

    def _load(self, key: str, newly: list[str], visiting: set[str]) -> None:
        if key in self._loaded or key in visiting:
            return
        visiting.add(key)
        pkg = self.packages.get(key)
        if pkg is None:
            raise PackageNotFoundError(f"依赖 '{key}' 不在 Pyodide {self.version} 的锁文件中")
        for dep in pkg.depends:
            self._load(normalize_name(dep), newly, visiting)
        self._fetch(pkg)
        self._loaded.append(key)
        newly.append(key)

    def _fetch(self, pkg: LockPackage) -> Path:
        dest = self.cache_dir / pkg.file_name
        if dest.is_file() and (not pkg.sha256 or sha256_file(dest) == pkg.sha256):
            logger.debug("  缓存命中: %s", dest)
            return dest

        download(self.base_url + pkg.file_name, dest, self.opener, self.timeout)
        if pkg.sha256:
            try:
                verify_checksum(dest, pkg.sha256)
            except IntegrityError:
                dest.unlink(missing_ok=True)
                raise
        return dest

    def pyimport(self, module: str) -> Installer:
        """获取运行时内模块；目前只提供 micropip 安装器"""
        if normalize_name(module) != "micropip":
            raise RuntimeLoadError(f"不支持导入模块: {module}")
        if "micropip" not in self._loaded:
            raise RuntimeLoadError("micropip 尚未加载，请先调用 load_package('micropip')")
        if self._installer is None:
            from pyodide_prep.core.runtime.installer import Installer
            self._installer = Installer(self)
        return self._installer


def _dist_version(dist_dir: Path) -> str:
    manifest = dist_dir / "package.json"
    data = json.loads(manifest.read_text(encoding="utf-8"))
    version = str(data.get("version", "")).lstrip("^~=v")
    if not version:
        raise RuntimeLoadError(f"{manifest} 缺少 version 字段")
    return version


def _read_lock(
    dist_dir: Path,
    cdn_url: str,
    opener: urllib.request.OpenerDirector,
    timeout: float,
) -> dict[str, Any]:
    local = dist_dir / LOCK_FILE_NAME
    if local.is_file():
        logger.info("使用发行目录中的锁文件: %s", local)
        return json.loads(local.read_text(encoding="utf-8"))

    version = _dist_version(dist_dir)
    url = f"{cdn_url.rstrip('/')}/v{version}/full/{LOCK_FILE_NAME}"
    logger.info("发行目录中没有锁文件，从 CDN 获取: %s", url)
    return fetch_json(url, opener, timeout)


def load_runtime(
    dist_dir: str | Path,
    cache_dir: str | Path,
    proxy: ProxyConfig | None = None,
    *,
    cdn_url: str = DEFAULT_CDN_URL,
    index_url: str = DEFAULT_INDEX_URL,
    timeout: float = DEFAULT_TIMEOUT,
) -> PyodideRuntime:
    """加载 Pyodide 运行时

    Raises:
        RuntimeLoadError: 锁文件缺失、无法下载或格式错误
    """
    opener = (proxy or ProxyConfig()).build_opener()
    try:
        lock_data = _read_lock(Path(dist_dir), cdn_url, opener, timeout)
        if not isinstance(lock_data, dict):
            raise RuntimeLoadError(f"锁文件顶层不是对象: {type(lock_data).__name__}")
        runtime = PyodideRuntime(
            lock_data, Path(cache_dir), opener,
            cdn_url=cdn_url, index_url=index_url, timeout=timeout,
        )
    except RuntimeLoadError:
        raise
    except (PrepError, OSError, ValueError, KeyError, TypeError) as e:
        raise RuntimeLoadError(f"加载 Pyodide 运行时失败: {e}") from e

    if not runtime.version:
        raise RuntimeLoadError("锁文件缺少 info.version")
    logger.info(
        "Pyodide %s 已就绪 (python %s, %d 个内置包)",
        runtime.version, runtime.info.python or "?", len(runtime.packages),
    )
    return runtime
