"""
爬虫基类模块

包含爬虫的抽象基类：
- BaseSpider: 爬虫基类
"""
import asyncio
import aiohttp
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
from loguru import logger
from fake_useragent import UserAgent

from config import Config
from core.http_client import HTML_ACCEPT, FetchResult, build_headers, create_session, fetch


class BaseSpider(ABC):
    """
    爬虫基类

    所有基于 HTTP 的爬虫的公共基类，提供：
    - HTTP Session 管理（CookieJar、超时）
    - 页面获取
    - 统计信息
    - 异步上下文管理

    子类需要实现:
    - get_statistics(): 获取统计信息
    """

    def __init__(self, config: Config, cookie: Optional[str] = None, start_url: Optional[str] = None):
        """
        初始化爬虫

        Args:
            config: 配置对象
            cookie: 可选 Cookie 字符串（"a=b; c=d"）
            start_url: Cookie 作用的起始 URL
        """
        self.config = config
        self.cookie = cookie
        self.start_url = start_url
        self.session: Optional[aiohttp.ClientSession] = None
        self.ua = UserAgent()

        # 基础统计信息
        self.stats = {
            'pages_fetched': 0,
            'requests_failed': 0,
        }

    async def __aenter__(self):
        """异步上下文管理器入口"""
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """异步上下文管理器出口"""
        await self.close()

    async def init(self):
        """
        初始化爬虫

        子类应该调用 super().init() 并添加特定初始化逻辑
        """
        logger.info("⚙️  初始化爬虫组件...")
        self.session = create_session(self.config.crawler, self.cookie, self.start_url)

    async def close(self):
        """
        关闭爬虫

        子类应该先执行特定清理逻辑，再调用 super().close()
        """
        logger.info("🔒 关闭爬虫...")

        if self.session:
            await self.session.close()

        logger.info(f"📊 爬虫统计: {self.get_statistics()}")

    def get_headers(self) -> Dict[str, str]:
        """
        获取请求头

        子类可重写此方法添加特定请求头
        """
        return build_headers(self.ua, HTML_ACCEPT, self.config.crawler.rotate_user_agent)

    async def fetch_page(self, url: str) -> FetchResult:
        """
        获取页面

        传输错误在有限重试后抛出，由调用方决定如何处理。

        Args:
            url: 页面URL

        Returns:
            FetchResult
        """
        logger.debug(f"📄 获取页面: {url}")
        result = await fetch(self.session, url, headers=self.get_headers())
        self.stats['pages_fetched'] += 1
        if self.config.crawler.download_delay:
            await asyncio.sleep(self.config.crawler.download_delay)
        return result

    @abstractmethod
    def get_statistics(self) -> Dict[str, Any]:
        """
        获取统计信息

        子类必须实现此方法
        """
        pass
