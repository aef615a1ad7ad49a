"""
站点爬虫
从种子页面出发按深度广度优先遍历静态 HTML，收集图片地址
"""
from collections import deque
from typing import Any, Dict, List, Optional
from loguru import logger

from config import Config
from core.activity_log import ActivityLog
from core.models import ImageCandidate
from parsers.page_parser import PageParser
from spiders.base import BaseSpider


class SiteCrawler(BaseSpider):
    """
    站点爬虫（BFS）

    - 每个页面最多访问一次（按去 fragment 的规范化 URL 去重）
    - 只访问 depth <= max_depth 的页面
    - 非 HTML 响应记录 skipped_non_html，不展开
    - 页面获取失败只影响该页面

    Example:
        async with SiteCrawler(config, activity, start_url=seed) as crawler:
            candidates = await crawler.crawl(seed, max_depth=2, same_origin_only=True)
    """

    def __init__(
        self,
        config: Config,
        activity: ActivityLog,
        cookie: Optional[str] = None,
        start_url: Optional[str] = None
    ):
        super().__init__(config, cookie=cookie, start_url=start_url)
        self.activity = activity
        self.parser = PageParser(config)
        self.stats.update({
            'pages_visited': 0,
            'pages_skipped': 0,
            'images_found': 0,
        })

    async def crawl(self, seed: str, max_depth: int, same_origin_only: bool = True) -> List[ImageCandidate]:
        """
        广度优先爬取

        Args:
            seed: 种子URL
            max_depth: 最大深度（种子为 0）
            same_origin_only: 只跟随与种子同源的链接

        Returns:
            按发现顺序排列的候选图片（跨页面可能重复，由入库阶段去重）
        """
        seed_url = self.parser.normalize_page_url(seed) or seed
        allowed_origin = self.parser.origin_of(seed_url) if same_origin_only else None

        logger.info(f"🚀 开始爬取站点: {seed_url}")
        logger.info(f"   最大深度: {max_depth}, 仅同源: {same_origin_only}")

        queue = deque([(seed_url, 0)])
        enqueued = {seed_url}
        visited = set()
        candidates: List[ImageCandidate] = []

        while queue:
            url, depth = queue.popleft()
            if url in visited or depth > max_depth:
                continue
            visited.add(url)
            self.activity.log(f"SITE visit depth={depth} url={url}")

            try:
                result = await self.fetch_page(url)
                if not result.is_html:
                    self.stats['pages_skipped'] += 1
                    self.activity.log(f"SITE skipped_non_html url={url}")
                    continue

                page_url = result.url or url
                soup = self.parser.parse(result.text())
                image_urls = self.parser.extract_image_urls(soup, page_url)
                links = self.parser.extract_links(soup, page_url, allowed_origin) if depth < max_depth else []
            except Exception as e:
                self.stats['requests_failed'] += 1
                logger.error(f"❌ 获取出错 {url}: {e!r}")
                self.activity.log(f"SITE page_error url={url} err={e}")
                continue

            self.stats['pages_visited'] += 1
            candidates.extend(ImageCandidate(location=image_url, discovered_from=url) for image_url in image_urls)
            self.stats['images_found'] += len(image_urls)
            self.activity.log(f"SITE discovered page={url} images={len(image_urls)}")

            for link in links:
                if link not in visited and link not in enqueued:
                    enqueued.add(link)
                    queue.append((link, depth + 1))

        logger.success(f"🎉 站点爬取完成: 访问 {self.stats['pages_visited']} 个页面，发现 {len(candidates)} 张图片")
        return candidates

    def get_statistics(self) -> Dict[str, Any]:
        return self.stats.copy()
