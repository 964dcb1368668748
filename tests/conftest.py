"""测试共享 fixture: 伪造的 urllib opener 与运行时/安装器"""

from __future__ import annotations

import hashlib
import io
import json
import urllib.error
import zipfile
from types import SimpleNamespace
from collections.abc import Callable
from typing import Any

import pytest

from pyodide_prep.core.exceptions import InstallError
from pyodide_prep.utils.logger import reset_logging


class FakeOpener:
    """按 URL 返回预置内容的 opener，记录所有请求"""

    def __init__(self, routes: dict[str, bytes] | None = None) -> None:
        self.routes: dict[str, bytes] = dict(routes or {})
        self.requests: list[str] = []

    def add_json(self, url: str, data: Any) -> None:
        self.routes[url] = json.dumps(data).encode("utf-8")

    def open(self, url: str, timeout: float | None = None) -> io.BytesIO:
        self.requests.append(url)
        if url not in self.routes:
            raise urllib.error.URLError(f"no route for {url}")
        return io.BytesIO(self.routes[url])


class FakeProxy:
    """满足 ProxyConfig.build_opener() 接口的替身"""

    def __init__(self, opener: FakeOpener) -> None:
        self.url = None
        self.opener = opener

    def build_opener(self) -> FakeOpener:
        return self.opener


class FakeInstaller:
    def __init__(self, fail_on: str = "", lock: str = '{"packages": {}}') -> None:
        self.fail_on = fail_on
        self.lock = lock
        self.calls: list[str] = []
        self.on_install: Callable[[str], None] | None = None

    def install(self, requirement: str) -> None:
        self.calls.append(requirement)
        if self.on_install is not None:
            self.on_install(requirement)
        if requirement == self.fail_on:
            raise InstallError(f"boom: {requirement}", package=requirement)

    def freeze(self) -> str:
        return self.lock


class FakeRuntime:
    def __init__(self, installer: FakeInstaller) -> None:
        self.installer = installer
        self.loaded: list[str] = []

    def load_package(self, name: str) -> list[str]:
        self.loaded.append(name)
        return [name]

    def pyimport(self, module: str) -> FakeInstaller:
        return self.installer


def make_wheel(name: str, version: str, top_level: list[str] | None = None) -> bytes:
    """生成最小的轮子 zip 内容"""
    buf = io.BytesIO()
    dist_info = f"{name.replace('-', '_')}-{version}.dist-info"
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr(f"{dist_info}/METADATA", f"Name: {name}\nVersion: {version}\n")
        if top_level is not None:
            zf.writestr(f"{dist_info}/top_level.txt", "\n".join(top_level) + "\n")
    return buf.getvalue()


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


@pytest.fixture
def fakes() -> SimpleNamespace:
    """测试替身与构造工具的集合"""
    return SimpleNamespace(
        Installer=FakeInstaller,
        Runtime=FakeRuntime,
        Opener=FakeOpener,
        make_wheel=make_wheel,
        sha256=sha256_bytes,
    )


@pytest.fixture
def fake_opener() -> FakeOpener:
    return FakeOpener()


@pytest.fixture
def fake_proxy(fake_opener: FakeOpener) -> FakeProxy:
    return FakeProxy(fake_opener)


@pytest.fixture(autouse=True)
def _clean_logging():
    yield
    reset_logging()
