"""统一异常体系

所有业务异常继承 PrepError，替代散落的 ValueError / RuntimeError。
各阶段据此区分"中止本阶段"与"继续执行"，CLI 层据此输出友好提示。
"""

from __future__ import annotations


class PrepError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(PrepError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class ValidationError(PrepError, ValueError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class NetworkError(PrepError, ConnectionError):
    """网络请求失败"""

    code = "NETWORK_ERROR"


class IntegrityError(PrepError):
    """下载文件校验和不匹配"""

    code = "INTEGRITY_ERROR"


class RuntimeLoadError(PrepError):
    """Pyodide 运行时加载失败"""

    code = "RUNTIME_LOAD_ERROR"


class PackageNotFoundError(PrepError):
    """运行时锁文件或包索引中找不到指定包"""

    code = "PACKAGE_NOT_FOUND"


class InstallError(PrepError):
    """安装器安装单个包失败"""

    code = "INSTALL_ERROR"

    def __init__(self, message: str, package: str = "") -> None:
        super().__init__(message)
        self.package = package


class LockFileError(PrepError):
    """锁文件生成或写入失败"""

    code = "LOCK_FILE_ERROR"
