"""CLI — 构建预处理命令"""

from __future__ import annotations

from pathlib import Path

import click

from pyodide_prep.core.config import DEFAULT_CONFIG_FILE, Config, get_config
from pyodide_prep.utils.yaml_io import save_yaml


def register(group: click.Group) -> None:
    group.add_command(prepare)
    group.add_command(show_proxy)
    group.add_command(list_packages)
    group.add_command(copy_assets)
    group.add_command(init_config_file)


@click.command()
@click.option("--skip-packages", is_flag=True, help="跳过包暂存阶段")
@click.option("--skip-assets", is_flag=True, help="跳过静态资源复制阶段")
def prepare(skip_packages: bool, skip_assets: bool) -> None:
    """执行完整的构建预处理：代理 → 包暂存 → 静态资源复制"""
    from pyodide_prep.core.pipeline import run_prepare

    report = run_prepare(get_config(), skip_packages=skip_packages, skip_assets=skip_assets)

    click.echo(f"代理: {report.proxy.url or '无'}")
    if report.stage is not None:
        stage = report.stage
        click.echo(
            f"包暂存: {stage.status} "
            f"(尝试 {stage.attempted}, 成功 {len(stage.installed)})"
        )
        if stage.failed_package:
            click.echo(f"  失败的包: {stage.failed_package}")
        if stage.lock_path:
            click.echo(f"  锁文件: {stage.lock_path}")
    if report.assets is not None:
        a = report.assets
        click.echo(f"静态资源: 新复制 {a.copied}, 已存在 {a.existing}, 跳过 {a.skipped}")


@click.command(name="proxy")
def show_proxy() -> None:
    """显示从环境变量选出的网络代理"""
    from pyodide_prep.core.proxy import select_proxy

    url = select_proxy()
    click.echo(url or "未配置代理")


@click.command(name="packages")
def list_packages() -> None:
    """列出待暂存的包清单"""
    packages = get_config().packages
    if not packages:
        click.echo("包清单为空。")
        return
    for i, pkg in enumerate(packages, 1):
        click.echo(f"  {i:2d}. {pkg}")


@click.command(name="copy-assets")
@click.option("--src", default=None, help="Pyodide 发行目录（默认取配置 dist_dir）")
@click.option("--dest", default=None, help="静态资源目录（默认取配置 static_dir）")
def copy_assets(src: str | None, dest: str | None) -> None:
    """仅复制运行时发行目录到静态资源目录"""
    from pyodide_prep.core.assets import copy_runtime_assets

    cfg = get_config()
    stats = copy_runtime_assets(src or cfg.dist_dir, dest or cfg.static_dir)
    click.echo(f"新复制 {stats.copied}, 已存在 {stats.existing}, 跳过 {stats.skipped}")


@click.command(name="init-config")
@click.argument("path", default=DEFAULT_CONFIG_FILE)
@click.option("--force", is_flag=True, help="覆盖已存在的文件")
def init_config_file(path: str, force: bool) -> None:
    """生成默认配置文件"""
    if Path(path).exists() and not force:
        raise click.ClickException(f"文件已存在: {path}（使用 --force 覆盖）")
    data = Config().to_dict()
    data.pop("extra", None)
    save_yaml(path, data)
    click.echo(f"已生成: {path}")
