"""micropip 式包安装器

安装策略:
  1. 包在运行时锁文件中且版本满足需求 → 由运行时加载（含依赖）
  2. 否则查询 PyPI JSON API，选最新的非预发布版本中
     兼容 Pyodide 的轮子（py3-none-any 或匹配运行时平台的轮子）
  3. 下载到包缓存目录并按 PyPI 公布的 sha256 校验
  4. 按 Pyodide 的标记环境过滤 requires_dist，递归安装依赖

freeze() 在运行时锁文件基础上追加 PyPI 安装的包，生成新的锁文件内容。
内部状态不支持并发调用，install() 必须逐个串行执行。
"""

from __future__ import annotations

import copy
import json
import logging
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from packaging.markers import UndefinedComparison, UndefinedEnvironmentName
from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import InvalidWheelFilename, parse_wheel_filename
from packaging.version import InvalidVersion, Version

from pyodide_prep.core.exceptions import (
    InstallError,
    LockFileError,
    PackageNotFoundError,
    PrepError,
)
from pyodide_prep.core.runtime.models import LockPackage, RuntimeInfo, normalize_name
from pyodide_prep.utils.net import download, fetch_json, sha256_file, verify_checksum

if TYPE_CHECKING:
    from pyodide_prep.core.runtime.loader import PyodideRuntime

logger = logging.getLogger(__name__)


def pyodide_marker_env(info: RuntimeInfo) -> dict[str, str]:
    """与 Pyodide 运行时一致的 PEP 508 标记环境"""
    full = info.python or "3.12.0"
    short = ".".join(full.split(".")[:2])
    return {
        "os_name": "posix",
        "sys_platform": "emscripten",
        "platform_system": "Emscripten",
        "platform_machine": info.arch or "wasm32",
        "platform_release": "",
        "platform_version": "",
        "platform_python_implementation": "CPython",
        "implementation_name": "cpython",
        "implementation_version": full,
        "python_version": short,
        "python_full_version": full,
    }


@dataclass
class WheelCandidate:
    """PyPI 上选中的一个轮子"""

    name: str
    version: str
    filename: str
    url: str
    sha256: str = ""
    requires_dist: list[str] = field(default_factory=list)


class Installer:
    """绑定到某个 PyodideRuntime 的安装器"""

    def __init__(self, runtime: PyodideRuntime) -> None:
        self.runtime = runtime
        self.marker_env = pyodide_marker_env(runtime.info)
        self._installed: dict[str, LockPackage] = {}

    @property
    def installed(self) -> dict[str, LockPackage]:
        """从 PyPI 安装的包（不含运行时内置包）"""
        return dict(self._installed)

    def install(self, requirement: str) -> None:
        """安装单个需求及其依赖

        Raises:
            InstallError: 需求无效、找不到兼容轮子、下载或校验失败
        """
        try:
            req = Requirement(requirement)
        except InvalidRequirement as e:
            raise InstallError(f"无效的需求 '{requirement}': {e}", package=requirement) from e

        logger.debug("安装需求: %s", req)
        try:
            self._install(req)
        except InstallError:
            raise
        except (PrepError, OSError, ValueError, KeyError, zlib.error, zipfile.BadZipFile) as e:
            raise InstallError(f"安装 '{requirement}' 失败: {e}", package=requirement) from e

    def _install(self, req: Requirement) -> None:
        key = normalize_name(req.name)

        builtin = self.runtime.packages.get(key)
        if builtin is not None and self._satisfies(req, builtin.version):
            self.runtime.load_package(key)
            return

        existing = self._installed.get(key)
        if existing is not None:
            if not self._satisfies(req, existing.version):
                raise InstallError(
                    f"版本冲突: 需要 {req}，已安装 {existing.name} {existing.version}",
                    package=str(req),
                )
            return

        wheel = self._find_wheel(req)
        path = self._fetch_wheel(wheel)
        entry = LockPackage(
            name=key,
            version=wheel.version,
            file_name=wheel.url,
            install_dir="site",
            sha256=wheel.sha256 or sha256_file(path),
            package_type="package",
            imports=_wheel_imports(path, wheel.name),
        )
        # 先登记再处理依赖，依赖环不会无限递归
        self._installed[key] = entry
        logger.info("已安装: %s %s", wheel.name, wheel.version)

        for dep in self._dependencies(wheel, req.extras):
            self._install(dep)
            dep_key = normalize_name(dep.name)
            if dep_key not in entry.depends:
                entry.depends.append(dep_key)

    @staticmethod
    def _satisfies(req: Requirement, version: str) -> bool:
        if not req.specifier:
            return True
        try:
            return req.specifier.contains(Version(version), prereleases=True)
        except InvalidVersion:
            return False

    def _dependencies(self, wheel: WheelCandidate, extras: set[str]) -> list[Requirement]:
        deps: list[Requirement] = []
        for raw in wheel.requires_dist:
            try:
                dep = Requirement(raw)
            except InvalidRequirement:
                logger.warning("忽略 %s 中无法解析的依赖: %s", wheel.name, raw)
                continue
            if dep.marker is not None:
                envs = [{**self.marker_env, "extra": e} for e in (extras or {""})]
                try:
                    applies = any(dep.marker.evaluate(env) for env in envs)
                except (UndefinedComparison, UndefinedEnvironmentName) as e:
                    logger.warning("忽略 %s 中无法求值的依赖标记: %s (%s)", wheel.name, raw, e)
                    continue
                if not applies:
                    continue
            deps.append(dep)
        return deps

    def _compatible(self, filename: str) -> bool:
        try:
            _, _, _, tags = parse_wheel_filename(filename)
        except InvalidWheelFilename:
            return False
        info = self.runtime.info
        major_minor = "".join(self.marker_env["python_version"].split(".")[:2])
        platforms = {f"{info.platform}_{info.arch}"} if info.platform else set()
        if info.abi_version:
            platforms.add(f"pyodide_{info.abi_version}_{info.arch}")
        for tag in tags:
            if tag.abi == "none" and tag.platform == "any" and tag.interpreter.startswith("py3"):
                return True
            if tag.platform in platforms and tag.interpreter == f"cp{major_minor}":
                return True
        return False

    def _find_wheel(self, req: Requirement) -> WheelCandidate:
        index = self.runtime.index_url.rstrip("/")
        data = fetch_json(f"{index}/{req.name}/json", self.runtime.opener, self.runtime.timeout)
        releases: dict[str, list[dict[str, Any]]] = data.get("releases") or {}

        versions: list[Version] = []
        for raw in releases:
            try:
                versions.append(Version(raw))
            except InvalidVersion:
                continue

        for version in sorted(versions, reverse=True):
            # 需求本身没写预发布版本时跳过预发布版
            if version.is_prerelease and not req.specifier.prereleases:
                continue
            if not req.specifier.contains(version, prereleases=True):
                continue
            raw_version = _raw_key(releases, version)
            for f in releases.get(raw_version) or []:
                if f.get("yanked") or f.get("packagetype") != "bdist_wheel":
                    continue
                if not f.get("url") or not self._compatible(f.get("filename", "")):
                    continue
                return WheelCandidate(
                    name=(data.get("info") or {}).get("name") or req.name,
                    version=raw_version,
                    filename=f["filename"],
                    url=f["url"],
                    sha256=(f.get("digests") or {}).get("sha256", ""),
                    requires_dist=self._requires_dist(req.name, raw_version, data),
                )

        raise PackageNotFoundError(
            f"找不到满足 '{req}' 的 Pyodide 兼容轮子 (纯 Python 或 {self.runtime.info.platform})"
        )

    def _requires_dist(self, name: str, version: str, project: dict[str, Any]) -> list[str]:
        info = project.get("info") or {}
        if info.get("version") != version:
            index = self.runtime.index_url.rstrip("/")
            info = fetch_json(
                f"{index}/{name}/{version}/json", self.runtime.opener, self.runtime.timeout,
            ).get("info") or {}
        return list(info.get("requires_dist") or [])

    def _fetch_wheel(self, wheel: WheelCandidate) -> Path:
        dest = self.runtime.cache_dir / wheel.filename
        if dest.is_file() and (not wheel.sha256 or sha256_file(dest) == wheel.sha256):
            logger.debug("  缓存命中: %s", dest)
            return dest
        download(wheel.url, dest, self.runtime.opener, self.runtime.timeout)
        if wheel.sha256:
            try:
                verify_checksum(dest, wheel.sha256)
            except PrepError:
                dest.unlink(missing_ok=True)
                raise
        return dest

    def freeze(self) -> str:
        """生成锁文件内容：运行时锁文件 + 已安装的 PyPI 包"""
        lock = copy.deepcopy(self.runtime.lock_data)
        packages = lock.setdefault("packages", {})
        for key, entry in self._installed.items():
            packages[key] = entry.to_dict()
        try:
            return json.dumps(lock, ensure_ascii=False, indent=2, sort_keys=True)
        except (TypeError, ValueError) as e:
            raise LockFileError(f"锁文件序列化失败: {e}") from e


def _raw_key(releases: dict[str, Any], version: Version) -> str:
    """PyPI 的版本键可能不是规范形式（如 '1.0' vs '1.0.0'）"""
    for raw in releases:
        try:
            if Version(raw) == version:
                return raw
        except InvalidVersion:
            continue
    return str(version)


def _wheel_imports(path: Path, name: str) -> list[str]:
    try:
        with zipfile.ZipFile(path) as zf:
            for entry in zf.namelist():
                if entry.endswith(".dist-info/top_level.txt"):
                    text = zf.read(entry).decode("utf-8")
                    names = [line.strip() for line in text.splitlines() if line.strip()]
                    if names:
                        return names
    except (zipfile.BadZipFile, zlib.error, OSError, UnicodeDecodeError) as e:
        raise InstallError(f"无法读取轮子 {path.name}: {e}", package=name) from e
    return [name.lower().replace("-", "_")]
