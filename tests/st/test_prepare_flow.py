"""三阶段构建预处理流程测试（伪造运行时，真实文件系统）"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from pyodide_prep.core.config import Config
from pyodide_prep.core.exceptions import RuntimeLoadError
from pyodide_prep.core.pipeline import run_prepare
from pyodide_prep.core.stager import STATUS_INSTALL_FAILED, STATUS_OK, STATUS_RUNTIME_FAILED


@pytest.fixture
def project(tmp_path: Path) -> Config:
    """前端项目布局: package.json + node_modules/pyodide"""
    (tmp_path / "package.json").write_text(json.dumps({"dependencies": {"pyodide": "^0.27.2"}}))
    dist = tmp_path / "node_modules" / "pyodide"
    dist.mkdir(parents=True)
    (dist / "package.json").write_text(json.dumps({"name": "pyodide", "version": "0.27.2"}))
    (dist / "pyodide.mjs").write_text("export {}")
    (dist / "pyodide.asm.wasm").write_bytes(b"\0asm")
    return Config(
        cache_dir=str(tmp_path / "static" / "pyodide"),
        static_dir=str(tmp_path / "static" / "pyodide"),
        dist_dir=str(dist),
        project_manifest=str(tmp_path / "package.json"),
        packages=["micropip", "numpy", "pytz"],
    )


def _loader(runtime):
    def load(dist_dir, cache_dir, proxy, **kwargs):
        runtime.proxy = proxy
        return runtime
    return load


def test_full_run(project: Config, fakes) -> None:
    installer = fakes.Installer(lock='{"packages": {"pytz": {}}}')
    runtime = fakes.Runtime(installer)

    report = run_prepare(project, environ={"https_proxy": "http://proxy:3128"},
                         runtime_loader=_loader(runtime))

    assert report.proxy.url == "http://proxy:3128/"
    assert runtime.proxy is report.proxy
    assert report.stage.status == STATUS_OK
    assert project.lock_path.read_text(encoding="utf-8") == '{"packages": {"pytz": {}}}'
    static = Path(project.static_dir)
    assert (static / "pyodide.mjs").exists()
    assert report.assets.copied == 3


def test_second_run_keeps_cache(project: Config, fakes) -> None:
    """复制阶段写入的 package.json 让下一次运行的版本检查命中"""
    run_prepare(project, environ={}, runtime_loader=_loader(fakes.Runtime(fakes.Installer())))
    report = run_prepare(project, environ={}, runtime_loader=_loader(fakes.Runtime(fakes.Installer())))

    assert report.stage.cache_invalidated is False
    assert report.assets.existing == 3
    assert report.assets.copied == 0


def test_upgrade_wipes_cache(project: Config, fakes) -> None:
    run_prepare(project, environ={}, runtime_loader=_loader(fakes.Runtime(fakes.Installer())))
    stale = Path(project.cache_dir) / "old-1.0-py3-none-any.whl"
    stale.write_bytes(b"old")
    Path(project.project_manifest).write_text(json.dumps({"dependencies": {"pyodide": "^0.28.0"}}))

    report = run_prepare(project, environ={}, runtime_loader=_loader(fakes.Runtime(fakes.Installer())))

    assert report.stage.cache_invalidated is True
    assert not stale.exists()
    assert report.assets.copied == 3


def test_invalid_proxy_does_not_stop_stages(project: Config, fakes) -> None:
    report = run_prepare(project, environ={"HTTPS_PROXY": "http://host:bad"},
                         runtime_loader=_loader(fakes.Runtime(fakes.Installer())))
    assert report.proxy.url is None
    assert report.stage.status == STATUS_OK
    assert report.assets.copied == 3


def test_stage_failures_still_copy_assets(project: Config, fakes) -> None:
    def broken(*args, **kwargs):
        raise RuntimeLoadError("offline")

    report = run_prepare(project, environ={}, runtime_loader=broken)
    assert report.stage.status == STATUS_RUNTIME_FAILED
    assert report.assets.copied == 3

    report = run_prepare(project, environ={},
                         runtime_loader=_loader(fakes.Runtime(fakes.Installer(fail_on="numpy"))))
    assert report.stage.status == STATUS_INSTALL_FAILED
    assert report.stage.attempted == 2


def test_unexpected_install_error_still_copies_assets(project: Config, fakes) -> None:
    installer = fakes.Installer()

    def bad_wheel(requirement: str) -> None:
        if requirement == "numpy":
            raise ValueError("top_level.txt 不是 UTF-8")

    installer.on_install = bad_wheel
    report = run_prepare(project, environ={}, runtime_loader=_loader(fakes.Runtime(installer)))

    assert report.stage.status == STATUS_INSTALL_FAILED
    assert report.stage.failed_package == "numpy"
    assert not project.lock_path.exists()
    assert report.assets.copied == 3


def test_skip_flags(project: Config) -> None:
    report = run_prepare(project, environ={}, skip_packages=True, skip_assets=True)
    assert report.stage is None
    assert report.assets is None
