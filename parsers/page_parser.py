"""
静态页面解析器
从 HTML 中提取图片地址与出链（不执行 JavaScript）
"""
from typing import List, Optional, Tuple
from urllib.parse import urlsplit
from bs4 import BeautifulSoup
from loguru import logger

from parsers.base import BaseParser


class PageParser(BaseParser):
    """
    页面解析器

    Example:
        parser = PageParser()
        soup = parser.parse(html)
        images = parser.extract_image_urls(soup, page_url)
        links = parser.extract_links(soup, page_url, allowed_origin=parser.origin_of(seed))
    """

    def parse(self, html: str) -> BeautifulSoup:
        return BeautifulSoup(html, 'html.parser')

    def extract_image_urls(self, soup: BeautifulSoup, page_url: str) -> List[str]:
        """
        提取页面中所有图片地址

        - 相对地址按页面URL解析
        - 丢弃 data: URI
        - 页面内去重，保持出现顺序
        """
        images = []
        seen = set()
        for img in soup.find_all('img'):
            src = self._get_image_url(img)
            full = self.resolve_url(src, page_url)
            if not full or full.lower().startswith('data:'):
                continue
            if full not in seen:
                seen.add(full)
                images.append(full)

        logger.debug(f"🖼️  {page_url} 发现 {len(images)} 张图片")
        return images

    def extract_links(
        self,
        soup: BeautifulSoup,
        page_url: str,
        allowed_origin: Optional[Tuple[str, str, int]] = None
    ) -> List[str]:
        """
        提取页面出链

        Args:
            soup: 已解析的页面
            page_url: 页面URL
            allowed_origin: 若提供，只保留与之同源的链接

        Returns:
            规范化（去 fragment）后的 http/https 链接，页面内去重
        """
        links = []
        seen = set()
        for anchor in soup.find_all('a', href=True):
            full = self.resolve_url(anchor.get('href'), page_url)
            if not full:
                continue
            if urlsplit(full).scheme.lower() not in ('http', 'https'):
                continue
            if allowed_origin is not None and self.origin_of(full) != allowed_origin:
                continue
            normalized = self.normalize_page_url(full)
            if normalized and normalized not in seen:
                seen.add(normalized)
                links.append(normalized)
        return links
