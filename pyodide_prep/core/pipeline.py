"""构建预处理流程

三个阶段严格按顺序各执行一次:
  1. 从环境变量选出网络代理
  2. 暂存包并生成锁文件（失败只记录日志，不影响第 3 阶段）
  3. 复制运行时发行目录到静态资源目录

用法:
    report = run_prepare(get_config())
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from pyodide_prep.core.assets import CopyStats, copy_runtime_assets
from pyodide_prep.core.config import Config
from pyodide_prep.core.proxy import ProxyConfig
from pyodide_prep.core.runtime.loader import load_runtime
from pyodide_prep.core.stager import PackageStager, RuntimeLoader, StageResult

logger = logging.getLogger(__name__)


@dataclass
class PrepareReport:
    proxy: ProxyConfig
    stage: StageResult | None = None
    assets: CopyStats | None = None


def run_prepare(
    config: Config,
    environ: Mapping[str, str] | None = None,
    *,
    skip_packages: bool = False,
    skip_assets: bool = False,
    runtime_loader: RuntimeLoader = load_runtime,
) -> PrepareReport:
    report = PrepareReport(proxy=ProxyConfig.from_env(environ))

    if skip_packages:
        logger.info("跳过包暂存阶段")
    else:
        report.stage = PackageStager(config, report.proxy, runtime_loader).run()

    if skip_assets:
        logger.info("跳过静态资源复制阶段")
    else:
        report.assets = copy_runtime_assets(config.dist_dir, config.static_dir)

    return report
