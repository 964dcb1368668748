"""日志配置

普通文本与结构化 JSON 两种输出，JSON 格式供 CI 构建流水线消费。
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone

LOG_LEVEL_ENV = "PYODIDE_PREP_LOG_LEVEL"
LOG_JSON_ENV = "PYODIDE_PREP_LOG_JSON"

_TEXT_FORMAT = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """结构化 JSON 日志格式器

    输出格式:
        {"timestamp": ..., "level": "INFO", "logger": "pyodide_prep.core.stager",
         "message": ..., "module": ..., "function": ..., "line": 42,
         "exception": "traceback..." (仅在有异常时)}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc,
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """配置根日志器

    参数:
        level: 日志级别字符串（DEBUG, INFO, WARNING, ERROR）
        json_output: 为 True 时使用 JSON 格式，否则使用人类可读格式

    说明:
        - 输出到 stderr，stdout 留给命令结果
        - 重复调用时先清理已有 handlers，避免日志重复输出
    """
    reset_logging()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
    root.addHandler(handler)


def setup_logging_from_env() -> None:
    """按环境变量 PYODIDE_PREP_LOG_LEVEL / PYODIDE_PREP_LOG_JSON 配置日志"""
    setup_logging(
        level=os.getenv(LOG_LEVEL_ENV, "INFO"),
        json_output=os.getenv(LOG_JSON_ENV, "") == "1",
    )


def reset_logging() -> None:
    """清理根日志器上所有 handlers，测试环境常用"""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
