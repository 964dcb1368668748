"""静态资源复制测试"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from pyodide_prep.core import assets
from pyodide_prep.core.assets import DIRECTORY, FILE, UNREADABLE, classify, copy_tree


@pytest.fixture
def dist(tmp_path: Path) -> Path:
    src = tmp_path / "node_modules" / "pyodide"
    (src / "sub").mkdir(parents=True)
    (src / "pyodide.mjs").write_text("export {}")
    (src / "sub" / "new.txt").write_text("new")
    (src / "sub" / "old.txt").write_text("from dist")
    return src


class TestClassify:
    def test_kinds(self, dist: Path, tmp_path: Path) -> None:
        assert classify(dist, tmp_path).kind == DIRECTORY
        assert classify(dist / "pyodide.mjs", tmp_path).kind == FILE
        entry = classify(dist / "missing", tmp_path)
        assert entry.kind == UNREADABLE
        assert isinstance(entry.error, FileNotFoundError)


class TestCopyTree:
    def test_full_copy(self, dist: Path, tmp_path: Path) -> None:
        dest = tmp_path / "static" / "pyodide"
        stats = copy_tree(dist, dest)
        assert (dest / "pyodide.mjs").read_text() == "export {}"
        assert (dest / "sub" / "new.txt").read_text() == "new"
        assert stats.copied == 3
        assert stats.directories == 2

    def test_existing_file_is_success(self, dist: Path, tmp_path: Path) -> None:
        """已存在的目标文件视为已复制，不覆盖也不报错"""
        dest = tmp_path / "static"
        (dest / "sub").mkdir(parents=True)
        (dest / "sub" / "old.txt").write_text("already here")

        stats = copy_tree(dist, dest)

        assert (dest / "sub" / "new.txt").read_text() == "new"
        assert (dest / "sub" / "old.txt").read_text() == "already here"
        assert stats.existing == 1
        assert stats.copied == 2

    def test_second_run_copies_nothing(self, dist: Path, tmp_path: Path) -> None:
        dest = tmp_path / "static"
        copy_tree(dist, dest)
        stats = copy_tree(dist, dest)
        assert stats.copied == 0
        assert stats.existing == 3

    def test_unreadable_entry_skipped_siblings_copied(self, dist: Path, tmp_path: Path) -> None:
        # 悬空符号链接出现在目录列表中，但 stat 失败
        os.symlink(dist / "does-not-exist", dist / "sub" / "broken")
        dest = tmp_path / "static"

        stats = copy_tree(dist, dest)

        assert stats.skipped == 1
        assert not os.path.lexists(dest / "sub" / "broken")
        assert (dest / "sub" / "new.txt").exists()
        assert (dest / "sub" / "old.txt").exists()
        assert (dest / "pyodide.mjs").exists()

    def test_unreadable_root_is_skipped(self, tmp_path: Path) -> None:
        stats = copy_tree(tmp_path / "missing", tmp_path / "dest")
        assert stats.skipped == 1
        assert not (tmp_path / "dest").exists()

    def test_other_copy_errors_propagate(
        self, dist: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def deny(src: Path, dest: Path) -> None:
            raise PermissionError(13, "Permission denied", str(dest))

        monkeypatch.setattr(assets, "copy_file_exclusive", deny)
        with pytest.raises(PermissionError):
            copy_tree(dist, tmp_path / "static")

    def test_mode_preserved(self, dist: Path, tmp_path: Path) -> None:
        script = dist / "run.sh"
        script.write_text("#!/bin/sh\n")
        script.chmod(0o755)
        copy_tree(dist, tmp_path / "static")
        assert os.stat(tmp_path / "static" / "run.sh").st_mode & 0o777 == 0o755

    def test_failed_copy_leaves_no_partial_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """复制中途失败时删除半截文件，下次运行重新完整复制"""
        src = tmp_path / "dist"
        src.mkdir()
        payload = b"\0asm" + b"x" * 99_996
        (src / "big.wasm").write_bytes(payload)
        dest = tmp_path / "static"
        real_copy = assets.shutil.copyfileobj
        failures = []

        def disk_full(fsrc, fdst, *args) -> None:
            if not failures:
                failures.append(1)
                fdst.write(fsrc.read(10))
                raise OSError(28, "No space left on device")
            real_copy(fsrc, fdst, *args)

        monkeypatch.setattr(assets.shutil, "copyfileobj", disk_full)
        with pytest.raises(OSError):
            copy_tree(src, dest)
        assert not (dest / "big.wasm").exists()

        stats = copy_tree(src, dest)
        assert stats.copied == 1
        assert stats.existing == 0
        assert (dest / "big.wasm").read_bytes() == payload
