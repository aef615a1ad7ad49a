"""
滚动采集器
在浏览器中打开动态画廊页面（Pinterest 搜索页），反复滚动并收集渲染出的图片地址
"""
import asyncio
import random
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote, urlsplit, urlunsplit
from loguru import logger
from selenium import webdriver
from selenium.common.exceptions import WebDriverException
from selenium.webdriver.common.by import By
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.ui import WebDriverWait

from config import BrowserConfig, Config
from core.activity_log import ActivityLog
from core.models import ScrollStats

# 只读取原始属性，过滤逻辑在 Python 侧完成
EXTRACT_SCRIPT = """
return Array.from(document.querySelectorAll('img')).map(function (img) {
  var container = img.closest('[data-grid-item], [data-test-id], [role="listitem"], article, div');
  return {
    src: img.getAttribute('src') || '',
    currentSrc: img.currentSrc || '',
    srcset: img.getAttribute('srcset') || '',
    width: img.naturalWidth || 0,
    height: img.naturalHeight || 0,
    containerText: (container && container.textContent) || ''
  };
});
"""

CONSENT_XPATH = (
    "//button[contains(normalize-space(.), 'Accept') "
    "or contains(normalize-space(.), 'Accetta') "
    "or contains(normalize-space(.), 'I agree')]"
)

THUMBNAIL_SEGMENT = re.compile(r'/\d+x/')


def pick_from_srcset(srcset: str) -> Optional[str]:
    """返回 srcset 中最后（最大）的候选地址"""
    parts = [item.strip().split()[0] for item in (srcset or '').split(',') if item.strip()]
    return parts[-1] if parts else None


def is_ad_container(text: str, keywords: Iterable[str]) -> bool:
    """容器文本是否包含广告关键词（不区分大小写，子串匹配）"""
    if not text:
        return False
    lowered = text.lower()
    for keyword in keywords:
        if keyword.lower() in lowered:
            return True
    return False


def normalize_gallery_url(raw: str) -> Optional[str]:
    """
    规范化画廊图片地址

    pinimg.com 缩略图路径段（/236x/、/474x/ ...）替换为 /originals/，其他地址原样返回；
    非法或非 http(s) 地址返回 None
    """
    try:
        parts = urlsplit(raw)
    except ValueError:
        return None
    if parts.scheme.lower() not in ('http', 'https') or not parts.netloc:
        return None
    if 'pinimg.com' not in (parts.hostname or ''):
        return raw
    path = THUMBNAIL_SEGMENT.sub('/originals/', parts.path, count=1)
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


def select_candidates(
    elements: List[Dict[str, Any]],
    keywords: Iterable[str],
    min_size: int
) -> Tuple[List[str], int]:
    """
    从一次页面读取的元素描述中筛选候选地址

    Returns:
        (原始候选地址列表, 跳过的广告数)
    """
    keywords = list(keywords)
    urls = []
    ads_skipped = 0
    for element in elements or []:
        if is_ad_container(element.get('containerText', ''), keywords):
            ads_skipped += 1
            continue

        candidate = pick_from_srcset(element.get('srcset', '')) or element.get('currentSrc') or element.get('src') or ''
        if not candidate.lower().startswith(('http://', 'https://')):
            continue

        width = element.get('width') or 0
        height = element.get('height') or 0
        if width > min_size and height > min_size:
            urls.append(candidate)
    return urls, ads_skipped


class ScrollCollector:
    """
    滚动采集器（Selenium Chrome）

    - 每次采集使用一个浏览器会话，任何退出路径都会关闭
    - 已收集集合只增不减，且不超过 max_images

    Example:
        collector = ScrollCollector(config, activity)
        urls, stats = await collector.collect(query="interior design", max_images=80)
    """

    def __init__(self, config: Config, activity: ActivityLog):
        self.config = config
        self.browser: BrowserConfig = config.browser
        self.activity = activity

    def build_search_url(self, query: str) -> str:
        return self.browser.search_url.format(query=quote(query, safe=''))

    def _create_driver(self, headful: bool = False):
        """创建 Chrome 驱动"""
        options = webdriver.ChromeOptions()
        if self.browser.headless and not headful:
            options.add_argument('--headless=new')
        options.add_argument(f'--window-size={self.browser.window_width},{self.browser.window_height}')
        options.add_argument(f'--user-agent={self.browser.user_agent}')
        options.add_argument('--no-sandbox')
        options.add_argument('--disable-dev-shm-usage')
        options.add_argument('--disable-gpu')

        driver = webdriver.Chrome(options=options)
        driver.set_page_load_timeout(self.browser.page_load_timeout)
        return driver

    def _dismiss_consent(self, driver):
        """尽力关闭 Cookie 同意弹窗，失败不视为错误"""
        try:
            button = WebDriverWait(driver, self.browser.consent_timeout).until(
                EC.element_to_be_clickable((By.XPATH, CONSENT_XPATH))
            )
            button.click()
            self.activity.log("PINTEREST consent accepted")
        except WebDriverException:
            logger.debug("未发现同意弹窗")

    async def collect(
        self,
        query: Optional[str] = None,
        start_url: Optional[str] = None,
        max_images: int = 120,
        max_scrolls: int = 50,
        headful: bool = False
    ) -> Tuple[List[str], ScrollStats]:
        """
        滚动采集图片地址

        Args:
            query: 搜索关键词（start_url 为空时使用）
            start_url: 直接打开的页面
            max_images: 最多收集的图片数
            max_scrolls: 最多滚动次数

        Returns:
            (按发现顺序排列的地址列表, 统计)
        """
        target_url = start_url or self.build_search_url(query or '')
        stats = ScrollStats(max_images=max_images, max_scrolls=max_scrolls)
        found: Dict[str, None] = {}

        logger.info(f"🚀 开始滚动采集: {target_url}")
        logger.info(f"   最大图片数: {max_images}, 最大滚动次数: {max_scrolls}")
        self.activity.log(f"PINTEREST open {target_url}")

        driver = None
        try:
            driver = self._create_driver(headful)
            logger.info("✓ 浏览器已启动")
            driver.get(target_url)
            await asyncio.sleep(self.browser.settle_delay)
            self._dismiss_consent(driver)

            while stats.scrolls < max_scrolls and len(found) < max_images:
                elements = driver.execute_script(EXTRACT_SCRIPT)
                urls, ads = select_candidates(elements, self.browser.ad_keywords, self.browser.min_element_size)
                stats.ads_skipped += ads

                for raw in urls:
                    normalized = normalize_gallery_url(raw)
                    if not normalized:
                        continue
                    found.setdefault(normalized, None)
                    if len(found) >= max_images:
                        break

                stats.scrolls += 1
                stats.collected = len(found)
                self.activity.log(
                    f"PINTEREST scroll={stats.scrolls} collected={stats.collected} adsSkipped={stats.ads_skipped}"
                )

                if len(found) >= max_images:
                    break
                driver.execute_script("window.scrollBy(0, arguments[0]);", self.browser.scroll_step)
                await asyncio.sleep(random.uniform(self.browser.pause_min, self.browser.pause_max))

        except WebDriverException as e:
            logger.error(f"❌ 浏览器采集失败: {e}")

        finally:
            if driver:
                driver.quit()
                logger.debug("✓ 浏览器已关闭")

        stats.collected = len(found)
        logger.success(f"🎉 滚动采集完成: {stats.collected} 张图片, {stats.scrolls} 次滚动, 跳过广告 {stats.ads_skipped}")
        return list(found), stats
