"""集中配置管理

所有路径、网络端点和待暂存的包清单都来自这里。
支持从 YAML 文件加载 + 编程式覆盖，包清单是数据而不是代码。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml
from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name

from pyodide_prep.core.exceptions import ConfigError
from pyodide_prep.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "configs/default.yml"

DEFAULT_PACKAGES: tuple[str, ...] = (
    "micropip",
    "packaging",
    "requests",
    "beautifulsoup4",
    "numpy",
    "pandas",
    "matplotlib",
    "scikit-learn",
    "scipy",
    "regex",
    "sympy",
    "tiktoken",
    "seaborn",
    "pytz",
    "black",
    "openai",
)


def validate_packages(value: Any) -> list[str]:
    """校验包清单: 非空字符串、合法 PEP 508 需求、规范化名称不重复

    Raises:
        ConfigError: 汇总全部问题，details 中逐条列出
    """
    if not isinstance(value, list):
        raise ConfigError(f"packages 必须是列表，实际为 {type(value).__name__}")

    problems: list[str] = []
    seen: dict[str, str] = {}
    for i, item in enumerate(value):
        if not isinstance(item, str) or not item.strip():
            problems.append(f"packages[{i}]: 必须是非空字符串，实际为 {item!r}")
            continue
        try:
            req = Requirement(item.strip())
        except InvalidRequirement as e:
            problems.append(f"packages[{i}]: 无效的需求 {item!r} ({e})")
            continue
        key = canonicalize_name(req.name)
        if key in seen:
            problems.append(f"packages[{i}]: {item!r} 与 {seen[key]!r} 重复")
            continue
        seen[key] = item

    if problems:
        raise ConfigError(f"包清单校验失败 ({len(problems)} 个问题)", details=problems)
    return [item.strip() for item in value]


@dataclass
class Config:
    """全局配置"""

    # 目录
    cache_dir: str = "static/pyodide"
    dist_dir: str = "node_modules/pyodide"
    static_dir: str = "static/pyodide"
    project_manifest: str = "package.json"
    runtime_package: str = "pyodide"
    lock_file_name: str = "pyodide-lock.json"

    # 网络
    cdn_url: str = "https://cdn.jsdelivr.net/pyodide"
    index_url: str = "https://pypi.org/pypi"
    timeout: int = 60

    packages: list[str] = field(default_factory=lambda: list(DEFAULT_PACKAGES))

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.packages = validate_packages(self.packages)
        if self.timeout <= 0:
            raise ConfigError(f"timeout 必须为正数: {self.timeout}")

    @property
    def lock_path(self) -> Path:
        return Path(self.cache_dir) / self.lock_file_name

    @classmethod
    def from_file(cls, path: str = DEFAULT_CONFIG_FILE) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"读取配置失败: {path} - {e}") from e
        if not data:
            return cls()
        known = {f.name for f in cls.__dataclass_fields__.values()} - {"extra"}
        matched = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置字段类型错误: {path} - {e}") from e
        cfg.extra = extra
        if extra:
            logger.debug("未识别的配置项: %s", ", ".join(sorted(extra)))
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)


# 全局单例，首次 import 时不加载文件；由 CLI 入口显式初始化
_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = DEFAULT_CONFIG_FILE) -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
