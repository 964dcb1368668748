"""pyodide-prep 命令行接口

每个子模块注册自己的命令到 main group。
"""

import click

from pyodide_prep import __version__
from pyodide_prep.core.config import DEFAULT_CONFIG_FILE, init_config
from pyodide_prep.core.exceptions import ConfigError
from pyodide_prep.utils.logger import setup_logging_from_env


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "config_path", default=DEFAULT_CONFIG_FILE, show_default=True,
    help="配置文件路径（不存在时使用默认配置）",
)
def main(config_path: str) -> None:
    """pyodide-prep - Pyodide 包缓存与静态资源构建预处理"""
    setup_logging_from_env()
    try:
        init_config(config_path)
    except ConfigError as e:
        lines = [str(e), *(f"  - {d}" for d in e.details)]
        raise click.ClickException("\n".join(lines)) from e


from pyodide_prep.cli.cmd_prepare import register as _reg_prepare  # noqa: E402

_reg_prepare(main)
