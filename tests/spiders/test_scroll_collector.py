"""
ScrollCollector 单元测试（mock Selenium 驱动）
"""
import asyncio
import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from selenium.common.exceptions import TimeoutException, WebDriverException

from config import Config
from core.activity_log import ActivityLog
from spiders.scroll_collector import (
    EXTRACT_SCRIPT,
    ScrollCollector,
    is_ad_container,
    normalize_gallery_url,
    pick_from_srcset,
    select_candidates,
)

KEYWORDS = ["sponsored", "promoted", "ad", "ads", "sponsorizzato", "pubblicita"]


def element(url, width=400, height=400, text="", srcset=""):
    return {"src": url, "currentSrc": "", "srcset": srcset, "width": width, "height": height, "containerText": text}


def make_driver(passes):
    """passes: 每次读取页面时返回的元素列表（最后一个重复使用）"""
    driver = MagicMock()
    driver.scroll_calls = 0
    state = {"index": 0}

    def execute_script(script, *args):
        if script == EXTRACT_SCRIPT:
            batch = passes[min(state["index"], len(passes) - 1)]
            state["index"] += 1
            return batch
        driver.scroll_calls += 1
        return None

    driver.execute_script.side_effect = execute_script
    return driver


class TestHelpers(unittest.TestCase):

    def test_pick_from_srcset_last(self):
        srcset = "https://i.pinimg.com/236x/a.jpg 1x, https://i.pinimg.com/736x/a.jpg 3x"
        self.assertEqual(pick_from_srcset(srcset), "https://i.pinimg.com/736x/a.jpg")
        self.assertIsNone(pick_from_srcset(""))

    def test_ad_keywords_substring(self):
        self.assertTrue(is_ad_container("Promoted by Brand", KEYWORDS))
        self.assertTrue(is_ad_container("Sponsorizzato", KEYWORDS))
        self.assertTrue(is_ad_container("SponsoredShop now", KEYWORDS))
        self.assertTrue(is_ad_container("x" * 5000 + "sponsored", KEYWORDS))
        self.assertFalse(is_ad_container("Living room ideas", KEYWORDS))
        self.assertFalse(is_ad_container("", KEYWORDS))

    def test_sponsored_joined_text_excluded(self):
        elements = [element("https://x.com/a.jpg", text="SponsoredShop now")]
        self.assertEqual(select_candidates(elements, KEYWORDS, 120), ([], 1))

    def test_extract_script_keeps_full_container_text(self):
        self.assertNotIn("slice(", EXTRACT_SCRIPT)

    def test_normalize_pinimg_thumbnail(self):
        self.assertEqual(
            normalize_gallery_url("https://i.pinimg.com/236x/ab/cd/ef.jpg"),
            "https://i.pinimg.com/originals/ab/cd/ef.jpg",
        )

    def test_normalize_other_hosts_unchanged(self):
        self.assertEqual(normalize_gallery_url("https://cdn.x.com/236x/a.jpg"), "https://cdn.x.com/236x/a.jpg")
        self.assertIsNone(normalize_gallery_url("data:image/png;base64,AAA"))

    def test_select_candidates(self):
        elements = [
            element("https://x.com/1.jpg"),
            element("https://x.com/ad.jpg", text="Sponsored"),
            element("https://x.com/tiny.jpg", width=120, height=400),
            element("/relative.jpg"),
            element("https://x.com/low.jpg", srcset="https://x.com/low.jpg 1x, https://x.com/high.jpg 2x"),
        ]
        urls, ads = select_candidates(elements, KEYWORDS, 120)
        self.assertEqual(urls, ["https://x.com/1.jpg", "https://x.com/high.jpg"])
        self.assertEqual(ads, 1)


class ScrollCollectorTestCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.activity = ActivityLog(Path(self._tmp.name) / "activity.log", echo=False)
        self.collector = ScrollCollector(Config(), self.activity)

    def tearDown(self):
        self._tmp.cleanup()

    def _messages(self):
        return [line.split("] ", 1)[1] for line in self.activity.tail(500)]

    def _collect(self, driver, **kwargs):
        with patch.object(ScrollCollector, "_create_driver", return_value=driver), \
                patch.object(ScrollCollector, "_dismiss_consent"), \
                patch("spiders.scroll_collector.asyncio.sleep", new=AsyncMock(return_value=None)):
            return asyncio.run(self.collector.collect(**kwargs))


class TestScrollCollectorCollect(ScrollCollectorTestCase):
    """collect 测试"""

    def test_single_pass_when_target_met(self):
        batch = [element(f"https://i.pinimg.com/236x/{i}.jpg") for i in range(10)]
        driver = make_driver([batch])
        urls, stats = self._collect(driver, query="cats", max_images=5, max_scrolls=10)

        self.assertEqual(len(urls), 5)
        self.assertEqual(urls[0], "https://i.pinimg.com/originals/0.jpg")
        self.assertEqual(stats.scrolls, 1)
        self.assertEqual(stats.collected, 5)
        self.assertEqual(driver.scroll_calls, 0)
        driver.quit.assert_called_once()
        self.assertIn("PINTEREST scroll=1 collected=5 adsSkipped=0", self._messages())

    def test_stops_at_max_scrolls(self):
        passes = [
            [element("https://x.com/1.jpg")],
            [element("https://x.com/1.jpg"), element("https://x.com/2.jpg")],
            [element("https://x.com/3.jpg", text="promoted pin")],
        ]
        driver = make_driver(passes)
        urls, stats = self._collect(driver, query="cats", max_images=50, max_scrolls=3)

        self.assertEqual(urls, ["https://x.com/1.jpg", "https://x.com/2.jpg"])
        self.assertEqual(stats.scrolls, 3)
        self.assertEqual(stats.ads_skipped, 1)
        self.assertEqual(driver.scroll_calls, 3)
        scroll_lines = [m for m in self._messages() if m.startswith("PINTEREST scroll=")]
        self.assertEqual(scroll_lines, [
            "PINTEREST scroll=1 collected=1 adsSkipped=0",
            "PINTEREST scroll=2 collected=2 adsSkipped=0",
            "PINTEREST scroll=3 collected=2 adsSkipped=1",
        ])

    def test_sponsored_never_collected(self):
        batch = [
            element("https://x.com/keep.jpg"),
            element("https://x.com/sponsored.jpg", text="Sponsored · Shop now"),
        ]
        urls, stats = self._collect(make_driver([batch]), query="cats", max_images=10, max_scrolls=2)
        self.assertEqual(urls, ["https://x.com/keep.jpg"])
        self.assertEqual(stats.ads_skipped, 2)

    def test_opens_search_url(self):
        driver = make_driver([[]])
        self._collect(driver, query="interior design", max_images=1, max_scrolls=1)
        driver.get.assert_called_once_with("https://www.pinterest.com/search/pins/?q=interior%20design")
        self.assertIn(
            "PINTEREST open https://www.pinterest.com/search/pins/?q=interior%20design", self._messages()
        )

    def test_start_url_takes_precedence(self):
        driver = make_driver([[]])
        self._collect(driver, query="x", start_url="https://www.pinterest.com/board/1/", max_images=1, max_scrolls=1)
        driver.get.assert_called_once_with("https://www.pinterest.com/board/1/")

    def test_browser_closed_on_error(self):
        driver = make_driver([[]])
        driver.execute_script.side_effect = WebDriverException("tab crashed")
        urls, stats = self._collect(driver, query="cats", max_images=5, max_scrolls=5)
        self.assertEqual(urls, [])
        self.assertEqual(stats.collected, 0)
        driver.quit.assert_called_once()


class TestDismissConsent(ScrollCollectorTestCase):
    """同意弹窗测试"""

    @patch("spiders.scroll_collector.WebDriverWait")
    def test_consent_clicked(self, mock_wait):
        button = MagicMock()
        mock_wait.return_value.until.return_value = button
        self.collector._dismiss_consent(MagicMock())
        button.click.assert_called_once()
        self.assertIn("PINTEREST consent accepted", self._messages())

    @patch("spiders.scroll_collector.WebDriverWait")
    def test_missing_consent_is_not_error(self, mock_wait):
        mock_wait.return_value.until.side_effect = TimeoutException("no banner")
        self.collector._dismiss_consent(MagicMock())
        self.assertEqual(self._messages(), [])


class TestSearchUrl(unittest.TestCase):

    def test_query_is_encoded(self):
        collector = ScrollCollector(Config(), MagicMock())
        self.assertEqual(
            collector.build_search_url("a&b c"),
            "https://www.pinterest.com/search/pins/?q=a%26b%20c",
        )


if __name__ == "__main__":
    unittest.main()
