"""
HTTP 客户端模块

- 带 CookieJar 的 aiohttp 会话（可从 "a=b; c=d" 字符串预置 Cookie）
- 单次请求超时 + tenacity 有限重试
- fake_useragent 请求头
"""
import asyncio
import codecs
import aiohttp
from typing import Dict, Optional
from loguru import logger
from fake_useragent import UserAgent
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from yarl import URL

from config import CrawlerConfig

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
IMAGE_ACCEPT = "image/avif,image/webp,image/apng,image/*,*/*;q=0.8"

TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


class FetchResult:
    """一次 GET 的结果（已完整读取响应体）"""

    def __init__(self, url: str, status: int, content_type: str, body: bytes, charset: Optional[str] = None):
        self.url = url
        self.status = status
        self.content_type = content_type
        self.body = body
        self.charset = charset

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400

    @property
    def is_html(self) -> bool:
        return 'text/html' in self.content_type

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith('image/')

    def text(self) -> str:
        """按响应声明的字符集解码，未知字符集回退到 utf-8"""
        encoding = self.charset or 'utf-8'
        try:
            codecs.lookup(encoding)
        except LookupError:
            logger.debug(f"未知字符集 {encoding}，按 utf-8 解码: {self.url}")
            encoding = 'utf-8'
        return self.body.decode(encoding, errors='replace')


def parse_cookie_string(cookie_string: str) -> Dict[str, str]:
    """解析 "a=b; c=d" 形式的 Cookie 字符串"""
    cookies = {}
    for part in (cookie_string or '').split(';'):
        part = part.strip()
        if not part or '=' not in part:
            continue
        name, value = part.split('=', 1)
        name = name.strip()
        if name:
            cookies[name] = value.strip()
    return cookies


def create_session(
    crawler_config: CrawlerConfig,
    cookie_string: Optional[str] = None,
    start_url: Optional[str] = None
) -> aiohttp.ClientSession:
    """
    创建 HTTP 会话

    Args:
        crawler_config: 抓取配置（超时）
        cookie_string: 可选 Cookie 字符串
        start_url: Cookie 作用的 URL

    Returns:
        aiohttp.ClientSession（调用方负责关闭）
    """
    jar = aiohttp.CookieJar(unsafe=True)
    cookies = parse_cookie_string(cookie_string) if cookie_string else {}
    if cookies and start_url:
        jar.update_cookies(cookies, response_url=URL(start_url))
        logger.debug(f"🍪 预置 Cookie: {', '.join(cookies)}")

    timeout = aiohttp.ClientTimeout(total=crawler_config.request_timeout)
    return aiohttp.ClientSession(timeout=timeout, cookie_jar=jar)


def build_headers(ua: Optional[UserAgent], accept: str, rotate: bool = True) -> Dict[str, str]:
    """获取请求头"""
    if ua is None:
        user_agent = "image-crawler/1.0"
    else:
        user_agent = ua.random if rotate else ua.chrome
    return {
        "User-Agent": user_agent,
        "Accept": accept,
        "Accept-Language": "en-US,en;q=0.9",
    }


@retry(
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=0.5, max=4),
    retry=retry_if_exception_type(TRANSPORT_ERRORS),
    reraise=True
)
async def fetch(session: aiohttp.ClientSession, url: str, headers: Optional[Dict[str, str]] = None) -> FetchResult:
    """
    GET 请求并读取完整响应体

    传输错误（连接失败、超时）重试一次后抛出；HTTP 状态码不抛异常，由调用方判断。
    """
    async with session.get(url, headers=headers, allow_redirects=True) as response:
        body = await response.read()
        content_type = str(response.headers.get('Content-Type', '')).lower()
        return FetchResult(
            url=str(response.url),
            status=response.status,
            content_type=content_type,
            body=body,
            charset=response.charset,
        )
