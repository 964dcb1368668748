"""包暂存阶段

按顺序完成:
  1. 创建包缓存目录（失败直接抛出，后续步骤都依赖它）
  2. 加载绑定到缓存目录的 Pyodide 运行时
  3. 比较项目清单声明的运行时版本与缓存中的版本，不一致则删除整个缓存目录
  4. 加载 micropip 安装器
  5. 逐个串行安装包清单中的包，任一失败即中止剩余安装
  6. 全部成功后 freeze 出锁文件，覆盖写入缓存目录

除第 1 步外，所有失败都只记录日志并提前结束本阶段，不影响进程退出码。
"""

from __future__ import annotations

import json
import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pyodide_prep.core.config import Config
from pyodide_prep.core.exceptions import PrepError
from pyodide_prep.core.proxy import ProxyConfig
from pyodide_prep.core.runtime.loader import load_runtime
from pyodide_prep.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

CACHE_MANIFEST = "package.json"

STATUS_OK = "ok"
STATUS_RUNTIME_FAILED = "runtime_failed"
STATUS_INSTALLER_FAILED = "installer_failed"
STATUS_INSTALL_FAILED = "install_failed"
STATUS_LOCK_FAILED = "lock_failed"

RuntimeLoader = Callable[..., Any]


@dataclass
class StageResult:
    """包暂存阶段的执行结果"""

    status: str = STATUS_OK
    attempted: int = 0
    installed: list[str] = field(default_factory=list)
    failed_package: str = ""
    lock_path: str = ""
    cache_invalidated: bool = False
    error: str = ""

    @property
    def success(self) -> bool:
        return self.status == STATUS_OK


def strip_version(raw: Any) -> str:
    """去掉 npm 风格的范围前缀: '^0.27.2' -> '0.27.2'"""
    return str(raw).strip().lstrip("^~=v")


def read_target_version(manifest: Path, runtime_package: str) -> str:
    """从项目清单 dependencies 中读取运行时目标版本"""
    data = json.loads(manifest.read_text(encoding="utf-8"))
    deps = data.get("dependencies") or {}
    if runtime_package not in deps:
        raise KeyError(f"{manifest} 的 dependencies 中没有 {runtime_package}")
    return strip_version(deps[runtime_package])


def read_cached_version(cache_dir: Path) -> str:
    """读取缓存目录中上次复制进来的运行时清单版本"""
    data = json.loads((cache_dir / CACHE_MANIFEST).read_text(encoding="utf-8"))
    return strip_version(data["version"])


class PackageStager:
    """把包清单暂存进 Pyodide 包缓存并生成锁文件"""

    def __init__(
        self,
        config: Config,
        proxy: ProxyConfig | None = None,
        runtime_loader: RuntimeLoader = load_runtime,
    ) -> None:
        self.config = config
        self.proxy = proxy or ProxyConfig()
        self.runtime_loader = runtime_loader
        self.cache_dir = Path(config.cache_dir)

    def run(self) -> StageResult:
        result = StageResult()

        # 缓存目录创建失败不捕获：后续所有步骤都无从进行
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        logger.info("准备 Pyodide 运行时与 micropip")

        try:
            runtime = self.runtime_loader(
                self.config.dist_dir,
                self.cache_dir,
                self.proxy,
                cdn_url=self.config.cdn_url,
                index_url=self.config.index_url,
                timeout=self.config.timeout,
            )
        except (PrepError, OSError, ValueError) as e:
            logger.exception("加载 Pyodide 失败")
            result.status = STATUS_RUNTIME_FAILED
            result.error = str(e)
            return result

        result.cache_invalidated = self.check_cache_version()

        try:
            logger.info("加载 micropip")
            runtime.load_package("micropip")
            micropip = runtime.pyimport("micropip")
        except (PrepError, OSError, ValueError) as e:
            logger.exception("加载 micropip 失败")
            result.status = STATUS_INSTALLER_FAILED
            result.error = str(e)
            return result

        packages = self.config.packages
        logger.info("下载 Pyodide 包 (%d 个): %s", len(packages), ", ".join(packages))
        for pkg in packages:
            result.attempted += 1
            logger.info("安装包: %s", pkg)
            try:
                micropip.install(pkg)
            except (PrepError, OSError, ValueError) as e:
                logger.exception("包安装失败: %s", pkg)
                result.status = STATUS_INSTALL_FAILED
                result.failed_package = pkg
                result.error = str(e)
                return result
            result.installed.append(pkg)

        logger.info("Pyodide 包下载完成，生成锁文件")
        lock_path = self.cache_dir / self.config.lock_file_name
        try:
            atomic_write(lock_path, micropip.freeze())
        except (PrepError, OSError, ValueError) as e:
            logger.exception("写入锁文件失败: %s", lock_path)
            result.status = STATUS_LOCK_FAILED
            result.error = str(e)
            return result

        result.lock_path = str(lock_path)
        logger.info("锁文件已写入: %s", lock_path)
        return result

    def check_cache_version(self) -> bool:
        """版本不一致时删除整个缓存目录，返回是否删除"""
        try:
            target = read_target_version(Path(self.config.project_manifest), self.config.runtime_package)
            cached = read_cached_version(self.cache_dir)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.info("缓存中没有可用的 Pyodide 版本信息，继续下载: %s", e)
            return False

        if target == cached:
            logger.debug("Pyodide 缓存版本一致: %s", cached)
            return False

        logger.info(
            "Pyodide 版本不一致 (目标 %s, 缓存 %s)，删除 %s", target, cached, self.cache_dir,
        )
        try:
            shutil.rmtree(self.cache_dir)
        except OSError:
            logger.exception("删除缓存目录失败: %s", self.cache_dir)
            return False
        return True
