"""
http_client 单元测试
"""
import unittest

from core.http_client import FetchResult, parse_cookie_string


class TestFetchResult(unittest.TestCase):

    def test_flags(self):
        result = FetchResult("https://x.com/", 302, "text/html; charset=utf-8", b"")
        self.assertTrue(result.ok)
        self.assertTrue(result.is_html)
        self.assertFalse(result.is_image)
        self.assertFalse(FetchResult("https://x.com/", 404, "image/png", b"").ok)

    def test_text_declared_charset(self):
        body = "中文页面".encode("gbk")
        self.assertEqual(FetchResult("https://x.com/", 200, "text/html", body, "gbk").text(), "中文页面")

    def test_text_unknown_charset_falls_back_to_utf8(self):
        body = "café".encode("utf-8")
        self.assertEqual(FetchResult("https://x.com/", 200, "text/html", body, "utf8mb4").text(), "café")


class TestParseCookieString(unittest.TestCase):

    def test_parse(self):
        self.assertEqual(parse_cookie_string("a=b; c=d=e;  ; bad"), {"a": "b", "c": "d=e"})


if __name__ == "__main__":
    unittest.main()
