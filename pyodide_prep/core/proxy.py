"""网络代理选择

从环境变量中选出一个代理 URL，在启动时计算一次，以 ProxyConfig 显式
传给所有需要联网的组件（运行时加载器、安装器），不修改进程级全局状态。

优先级:
  https_proxy > HTTPS_PROXY > all_proxy > ALL_PROXY > http_proxy > HTTP_PROXY

只考虑优先级最高的那一个值；它不可用时直接不走代理，不会回退到下一个。
"""

from __future__ import annotations

import logging
import os
import urllib.request
from collections.abc import Mapping
from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

logger = logging.getLogger(__name__)

# 构建期的请求目标 (cdn.jsdelivr.net / pypi.org / files.pythonhosted.org) 都是 HTTPS
PROXY_ENV_TIERS: tuple[tuple[str, str], ...] = (
    ("https_proxy", "HTTPS_PROXY"),
    ("all_proxy", "ALL_PROXY"),
    ("http_proxy", "HTTP_PROXY"),
)


def preferred_proxy(environ: Mapping[str, str]) -> str | None:
    """按优先级返回第一个非空的代理环境变量值"""
    for tier in PROXY_ENV_TIERS:
        for name in tier:
            value = environ.get(name)
            if value:
                return value
    return None


def normalize_proxy_url(value: str) -> str:
    """解析并规范化代理 URL

    Raises:
        ValueError: 缺少协议/主机，或端口非法
    """
    parts = urlsplit(value.strip())
    scheme = parts.scheme.lower()
    if scheme not in ("http", "https"):
        raise ValueError(f"代理协议无效: {parts.scheme!r}")
    if not parts.hostname:
        raise ValueError("代理 URL 缺少主机名")
    # 访问 port 时 urllib 会校验端口范围和格式
    _ = parts.port
    return urlunsplit((scheme, parts.netloc, parts.path or "/", parts.query, parts.fragment))


def select_proxy(environ: Mapping[str, str] | None = None) -> str | None:
    """选出可用的代理 URL，没有则返回 None

    非 http 开头的值（如 socks5://）视为不支持的代理协议；
    无法解析的值记录警告后忽略，均不会中断后续流程。
    """
    env = os.environ if environ is None else environ
    candidate = preferred_proxy(env)
    if not candidate:
        return None

    if not candidate.startswith("http"):
        logger.info("忽略代理 %s: 仅支持 http(s) 代理", candidate)
        return None

    try:
        return normalize_proxy_url(candidate)
    except ValueError as e:
        logger.warning('无效的网络代理 URL: "%s" (%s)', candidate, e)
        return None


@dataclass(frozen=True)
class ProxyConfig:
    """一次运行内固定不变的出站代理配置"""

    url: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ProxyConfig:
        config = cls(url=select_proxy(environ))
        if config.url:
            logger.info('已从环境变量初始化网络代理 "%s"', config.url)
        else:
            logger.debug("未配置网络代理，直连")
        return config

    def build_opener(self) -> urllib.request.OpenerDirector:
        """构建 urllib opener；无代理时显式禁用 urllib 自身的环境变量代理探测"""
        if self.url:
            handler = urllib.request.ProxyHandler({"http": self.url, "https": self.url})
        else:
            handler = urllib.request.ProxyHandler({})
        return urllib.request.build_opener(handler)
