"""运行时数据模型

对应 pyodide-lock.json 的结构:
  {"info": {...}, "packages": {"<name>": {...}}}
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from packaging.utils import canonicalize_name

LOCK_FILE_NAME = "pyodide-lock.json"


def normalize_name(name: str) -> str:
    """PEP 503 规范化，锁文件的键使用该形式"""
    return str(canonicalize_name(name))


@dataclass
class RuntimeInfo:
    """锁文件 info 段"""

    version: str
    arch: str = "wasm32"
    platform: str = ""
    python: str = ""
    abi_version: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuntimeInfo:
        return cls(
            version=str(data.get("version", "")),
            arch=str(data.get("arch", "wasm32")),
            platform=str(data.get("platform", "")),
            python=str(data.get("python", "")),
            abi_version=str(data.get("abi_version", "")),
        )


@dataclass
class LockPackage:
    """锁文件中的单个包条目"""

    name: str
    version: str
    file_name: str
    install_dir: str = "site"
    sha256: str = ""
    package_type: str = "package"
    imports: list[str] = field(default_factory=list)
    depends: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LockPackage:
        return cls(
            name=str(data["name"]),
            version=str(data.get("version", "")),
            file_name=str(data["file_name"]),
            install_dir=str(data.get("install_dir", "site")),
            sha256=str(data.get("sha256", "")),
            package_type=str(data.get("package_type", "package")),
            imports=list(data.get("imports") or []),
            depends=list(data.get("depends") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
