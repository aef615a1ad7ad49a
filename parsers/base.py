"""
解析器基类模块

包含解析器的抽象基类：
- BaseParser: 解析器基类
"""
from abc import ABC
from typing import Optional, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit

DEFAULT_PORTS = {'http': 80, 'https': 443}


class BaseParser(ABC):
    """
    解析器基类

    所有解析器的公共基类，提供：
    - URL 解析与规范化
    - 同源判断
    - 图片地址提取（含懒加载属性）
    """

    def __init__(self, parser_config=None):
        """
        初始化解析器

        Args:
            parser_config: 配置对象，可选
        """
        self._config = parser_config

    def resolve_url(self, raw: Optional[str], base_url: str) -> Optional[str]:
        """
        将相对地址解析为绝对地址

        Returns:
            绝对URL，无法解析时返回 None
        """
        if not raw:
            return None
        raw = raw.strip()
        if not raw:
            return None
        try:
            resolved = urljoin(base_url, raw)
        except ValueError:
            return None
        if not urlsplit(resolved).scheme:
            return None
        return resolved

    def normalize_page_url(self, url: str) -> Optional[str]:
        """
        页面URL规范化：去掉 fragment，scheme/host 小写，空路径补 "/"
        """
        try:
            parts = urlsplit(url)
        except ValueError:
            return None
        if parts.scheme.lower() not in DEFAULT_PORTS or not parts.netloc:
            return None
        path = parts.path or '/'
        return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ''))

    def origin_of(self, url: str) -> Optional[Tuple[str, str, int]]:
        """
        返回 (scheme, host, port)，默认端口补齐；非法URL返回 None
        """
        try:
            parts = urlsplit(url)
            scheme = parts.scheme.lower()
            host = (parts.hostname or '').lower()
            port = parts.port or DEFAULT_PORTS.get(scheme)
        except ValueError:
            return None
        if not scheme or not host:
            return None
        return scheme, host, port

    def _get_image_url(self, img_tag) -> Optional[str]:
        """
        从img标签获取图片URL

        优先 src，回退到懒加载属性 data-src / data-original

        Args:
            img_tag: BeautifulSoup img标签

        Returns:
            图片URL，如果无法获取返回None
        """
        return img_tag.get('src') or img_tag.get('data-src') or img_tag.get('data-original')
