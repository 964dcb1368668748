"""Pyodide 运行时与包安装器

- models.py: 锁文件数据模型
- loader.py: 运行时加载（锁文件 + 包缓存）
- installer.py: micropip 式安装器（运行时内置包 + PyPI 纯 Python 轮子）
"""

from pyodide_prep.core.runtime.installer import Installer
from pyodide_prep.core.runtime.loader import PyodideRuntime, load_runtime
from pyodide_prep.core.runtime.models import LockPackage, RuntimeInfo, normalize_name

__all__ = [
    "Installer",
    "LockPackage",
    "PyodideRuntime",
    "RuntimeInfo",
    "load_runtime",
    "normalize_name",
]
