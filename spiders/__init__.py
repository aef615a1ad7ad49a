"""
爬虫模块

包含两种发现策略：
- BaseSpider: HTTP 爬虫基类
- SiteCrawler: 站点广度优先爬虫
- ScrollCollector: 滚动画廊采集器
"""
from spiders.base import BaseSpider
from spiders.site_crawler import SiteCrawler
from spiders.scroll_collector import ScrollCollector

__all__ = [
    'BaseSpider',
    'SiteCrawler',
    'ScrollCollector',
]
