"""运行时静态资源复制

把 Pyodide 发行目录完整复制到静态资源目录。每个源条目先归类为
directory / file / unreadable 三种之一，再由对应的一条规则处理:

  - unreadable: 记录错误并跳过该条目，兄弟条目照常处理
  - directory:  创建目标目录（含中间目录），子条目按名称顺序依次处理
  - file:       独占方式复制；目标已存在视为已复制，其他错误向上抛出

不做清单或校验和比对，每次运行都会逐个尝试全部文件。
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DIRECTORY = "directory"
FILE = "file"
UNREADABLE = "unreadable"


@dataclass(frozen=True)
class Entry:
    """归类后的源条目"""

    kind: str
    src: Path
    dest: Path
    error: OSError | None = None


@dataclass
class CopyStats:
    copied: int = 0
    existing: int = 0
    skipped: int = 0
    directories: int = 0


def classify(src: Path, dest: Path) -> Entry:
    try:
        st = os.stat(src)
    except OSError as e:
        return Entry(UNREADABLE, src, dest, e)
    if stat.S_ISDIR(st.st_mode):
        return Entry(DIRECTORY, src, dest)
    return Entry(FILE, src, dest)


def copy_file_exclusive(src: Path, dest: Path) -> None:
    """复制文件内容和权限位；目标已存在时抛 FileExistsError

    独占创建成功后若复制失败，删除不完整的目标文件再抛出，
    否则下次运行会把它当作"已存在"跳过。
    """
    with open(src, "rb") as fsrc:
        fdst = open(dest, "xb")
        try:
            with fdst:
                shutil.copyfileobj(fsrc, fdst)
            shutil.copymode(src, dest)
        except BaseException:
            dest.unlink(missing_ok=True)
            raise


def copy_tree(src: str | Path, dest: str | Path) -> CopyStats:
    """递归复制 src 到 dest，跳过目标中已存在的文件

    Raises:
        OSError: 除"目标已存在"外的任何文件复制错误
    """
    stats = CopyStats()
    stack: list[tuple[Path, Path]] = [(Path(src), Path(dest))]

    while stack:
        entry = classify(*stack.pop())

        if entry.kind == UNREADABLE:
            logger.error("无法读取 %s，跳过: %s", entry.src, entry.error)
            stats.skipped += 1

        elif entry.kind == DIRECTORY:
            entry.dest.mkdir(parents=True, exist_ok=True)
            stats.directories += 1
            children = sorted(os.listdir(entry.src))
            # 逆序入栈，出栈顺序即名称顺序
            for name in reversed(children):
                stack.append((entry.src / name, entry.dest / name))

        else:
            try:
                copy_file_exclusive(entry.src, entry.dest)
            except FileExistsError:
                stats.existing += 1
                continue
            stats.copied += 1

    return stats


def copy_runtime_assets(dist_dir: str | Path, static_dir: str | Path) -> CopyStats:
    """把 Pyodide 发行目录复制进静态资源目录"""
    logger.info("复制 Pyodide 文件到静态资源目录: %s -> %s", dist_dir, static_dir)
    stats = copy_tree(dist_dir, static_dir)
    logger.info(
        "复制完成: 新复制 %d 个, 已存在 %d 个, 跳过 %d 个, 目录 %d 个",
        stats.copied, stats.existing, stats.skipped, stats.directories,
    )
    return stats
