"""
ImageIngestor 单元测试（mock aiohttp，Pillow 生成真实图片）
"""
import asyncio
import io
import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
from PIL import Image

from config import Config
from core.activity_log import ActivityLog
from core.ingestor import (
    ImageIngestor,
    build_filename,
    extension_for,
    normalize_quality,
    probe_image,
    recompress_image,
    sanitize_filename,
)
from core.models import ImageCandidate


def make_image(fmt="PNG", size=(300, 200), color=(200, 40, 40)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


def make_response(url, status=200, content_type="image/png", body=b""):
    resp = MagicMock()
    resp.url = url
    resp.status = status
    resp.headers = {"Content-Type": content_type}
    resp.charset = None
    resp.read = AsyncMock(return_value=body)
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=None)
    return resp


def make_session(routes):
    """routes: url -> (status, content_type, body) 或 Exception"""
    session = MagicMock()

    def get(url, **kwargs):
        route = routes[url]
        if isinstance(route, Exception):
            raise route
        status, content_type, body = route
        return make_response(url, status, content_type, body)

    session.get.side_effect = get
    return session


class TestNormalizeQuality(unittest.TestCase):
    """normalize_quality 测试"""

    def test_valid_values(self):
        self.assertEqual(normalize_quality(80), 80)
        self.assertEqual(normalize_quality("60"), 60)
        self.assertEqual(normalize_quality(74.5), 75)

    def test_clamped(self):
        self.assertEqual(normalize_quality(0), 1)
        self.assertEqual(normalize_quality(500), 100)
        self.assertEqual(normalize_quality(-3), 1)

    def test_invalid_falls_back(self):
        self.assertEqual(normalize_quality(None), 75)
        self.assertEqual(normalize_quality("abc"), 75)
        self.assertEqual(normalize_quality(float("nan")), 75)
        self.assertEqual(normalize_quality("inf", fallback=60), 60)


class TestFilenames(unittest.TestCase):
    """文件名生成测试"""

    def test_deterministic(self):
        url = "https://example.com/photos/Sunset Beach.jpeg?x=1"
        first = build_filename(url, "jpeg", "image/jpeg", 800, 600)
        second = build_filename(url, "jpeg", "image/jpeg", 800, 600)
        self.assertEqual(first, second)
        self.assertRegex(first, r"^[0-9a-f]{10}-800x600-Sunset_Beach\.jpg$")

    def test_distinct_urls_distinct_names(self):
        a = build_filename("https://example.com/a/photo.png", "png", "", 10, 10)
        b = build_filename("https://example.com/b/photo.png", "png", "", 10, 10)
        self.assertNotEqual(a, b)

    def test_empty_basename_uses_image(self):
        name = build_filename("https://example.com/", "gif", "", 5, 5)
        self.assertTrue(name.endswith("-5x5-image.gif"))

    def test_extension_precedence(self):
        self.assertEqual(extension_for("webp", "image/png"), ".webp")
        self.assertEqual(extension_for("", "image/png; charset=binary"), ".png")
        self.assertEqual(extension_for("", "application/octet-stream"), ".img")

    def test_sanitize_truncates(self):
        self.assertEqual(sanitize_filename("a b/c"), "a_b_c")
        self.assertEqual(len(sanitize_filename("x" * 500)), 180)


class TestProbeAndRecompress(unittest.TestCase):
    """probe_image / recompress_image 测试"""

    def test_probe_png(self):
        self.assertEqual(probe_image(make_image("PNG", (320, 240))), (320, 240, "png"))

    def test_probe_ignores_declared_type(self):
        data = make_image("JPEG", (400, 300))
        self.assertEqual(probe_image(data, "image/png"), (400, 300, "jpeg"))

    def test_probe_svg(self):
        svg = b'<svg xmlns="http://www.w3.org/2000/svg" width="640" height="480"></svg>'
        self.assertEqual(probe_image(svg, "image/svg+xml"), (640, 480, "svg"))

    def test_probe_svg_viewbox(self):
        svg = b'<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 500 250"></svg>'
        self.assertEqual(probe_image(svg, "image/svg+xml"), (500, 250, "svg"))

    def test_probe_garbage_raises(self):
        with self.assertRaises(Exception):
            probe_image(b"definitely not an image", "image/png")

    def test_recompress_jpeg(self):
        data = make_image("JPEG", (300, 300))
        output, recompressed = recompress_image(data, "jpeg", 50, ["jpeg", "png"])
        self.assertTrue(recompressed)
        with Image.open(io.BytesIO(output)) as img:
            self.assertEqual(img.format, "JPEG")
            self.assertEqual(img.size, (300, 300))

    def test_recompress_png_palette(self):
        output, recompressed = recompress_image(make_image("PNG"), "png", 75, ["png"])
        self.assertTrue(recompressed)
        with Image.open(io.BytesIO(output)) as img:
            self.assertEqual(img.format, "PNG")
            self.assertEqual(img.mode, "P")

    def test_recompress_applies_exif_orientation(self):
        exif = Image.Exif()
        exif[0x0112] = 6
        buf = io.BytesIO()
        Image.new("RGB", (300, 200), (10, 120, 200)).save(buf, format="JPEG", exif=exif)

        output, recompressed = recompress_image(buf.getvalue(), "jpeg", 75, ["jpeg"])
        self.assertTrue(recompressed)
        with Image.open(io.BytesIO(output)) as img:
            self.assertEqual(img.size, (200, 300))

    def test_gif_passes_through(self):
        data = make_image("GIF")
        output, recompressed = recompress_image(data, "gif", 75, ["jpeg", "png"])
        self.assertFalse(recompressed)
        self.assertEqual(output, data)


class TestImageIngestorIngest(unittest.TestCase):
    """ingest 测试"""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.images_dir = self.root / "images"
        self.activity = ActivityLog(self.root / "activity.log", echo=False)
        self.config = Config()

    def tearDown(self):
        self._tmp.cleanup()

    def _ingest(self, routes, candidates, min_width=200, quality=75):
        ingestor = ImageIngestor(make_session(routes), self.activity, self.config)
        return asyncio.run(ingestor.ingest(candidates, self.images_dir, min_width, quality))

    def _messages(self):
        return [line.split("] ", 1)[1] for line in self.activity.tail(100)]

    def test_saves_large_skips_small(self):
        big = "https://example.com/big.png"
        small = "https://example.com/small.png"
        routes = {
            big: (200, "image/png", make_image("PNG", (400, 300))),
            small: (200, "image/png", make_image("PNG", (100, 80))),
        }
        stats = self._ingest(routes, [ImageCandidate(location=big), ImageCandidate(location=small)])

        self.assertEqual(stats.found, 2)
        self.assertEqual(stats.saved, 1)
        self.assertEqual(stats.skipped_small, 1)
        self.assertEqual(stats.failed, 0)
        files = [p.name for p in self.images_dir.iterdir()]
        self.assertEqual(files, [build_filename(big, "png", "image/png", 400, 300)])

        messages = self._messages()
        self.assertTrue(any(m.startswith("IMG saved path=") and "width=400 height=300" in m for m in messages))
        self.assertIn(f"IMG skipped_small url={small} width=100 minWidth=200", messages)

    def test_duplicates_processed_once(self):
        url = "https://example.com/photo.jpg"
        routes = {url: (200, "image/jpeg", make_image("JPEG", (500, 400)))}
        stats = self._ingest(routes, [url, url, url])

        self.assertEqual(stats.found, 3)
        self.assertEqual(stats.saved + stats.skipped_small + stats.failed, 1)
        self.assertEqual(stats.saved, 1)
        self.assertEqual(stats.recompressed, 1)
        self.assertGreater(stats.bytes_before, 0)
        self.assertGreater(stats.bytes_after, 0)

    def test_non_image_and_bad_status_fail(self):
        html = "https://example.com/page.html"
        missing = "https://example.com/missing.png"
        routes = {
            html: (200, "text/html", b"<html></html>"),
            missing: (404, "image/png", b""),
        }
        stats = self._ingest(routes, [html, missing])

        self.assertEqual(stats.failed, 2)
        self.assertEqual(stats.saved, 0)
        messages = self._messages()
        self.assertIn(f"IMG failed_non_image_or_status url={html}", messages)
        self.assertIn(f"IMG failed_non_image_or_status url={missing}", messages)

    def test_transport_error_fails_item_only(self):
        broken = "https://broken.example/a.png"
        good = "https://example.com/good.png"
        routes = {
            broken: aiohttp.ClientConnectionError("connection refused"),
            good: (200, "image/png", make_image("PNG", (300, 300))),
        }
        stats = self._ingest(routes, [broken, good])

        self.assertEqual(stats.failed, 1)
        self.assertEqual(stats.saved, 1)

    def test_undecodable_payload_is_error(self):
        url = "https://example.com/fake.png"
        routes = {url: (200, "image/png", b"not really a png")}
        stats = self._ingest(routes, [url])

        self.assertEqual(stats.failed, 1)
        self.assertTrue(any(m.startswith(f"IMG error url={url}") for m in self._messages()))
        self.assertFalse(self.images_dir.exists() and any(self.images_dir.iterdir()))

    def test_gif_saved_without_recompression(self):
        url = "https://example.com/anim.gif"
        data = make_image("GIF", (300, 300))
        stats = self._ingest({url: (200, "image/gif", data)}, [url])

        self.assertEqual(stats.saved, 1)
        self.assertEqual(stats.recompressed, 0)
        self.assertEqual(stats.bytes_before, 0)
        saved = self.images_dir / build_filename(url, "gif", "image/gif", 300, 300)
        self.assertEqual(saved.read_bytes(), data)
        self.assertTrue(any("recompressed=false" in m for m in self._messages()))

    def test_recompress_failure_fails_item_only(self):
        bad = "https://example.com/bad.jpg"
        good = "https://example.com/good.jpg"
        bad_data = make_image("JPEG", (400, 300), (10, 10, 10))
        routes = {
            bad: (200, "image/jpeg", bad_data),
            good: (200, "image/jpeg", make_image("JPEG", (400, 300), (250, 250, 250))),
        }
        original = recompress_image

        def recompress(data, *args):
            if data == bad_data:
                raise OSError("encoder error")
            return original(data, *args)

        with patch("core.ingestor.recompress_image", side_effect=recompress):
            stats = self._ingest(routes, [bad, good])

        self.assertEqual(stats.failed, 1)
        self.assertEqual(stats.saved, 1)
        self.assertEqual(stats.recompressed, 1)
        self.assertIn(f"IMG error url={bad} err=encoder error", self._messages())
        self.assertEqual(len(list(self.images_dir.iterdir())), 1)

    def test_failed_write_not_counted_and_cleaned_up(self):
        url = "https://example.com/photo.jpg"
        routes = {url: (200, "image/jpeg", make_image("JPEG", (500, 400)))}

        with patch("core.ingestor.os.replace", side_effect=OSError("disk full")):
            stats = self._ingest(routes, [url])

        self.assertEqual(stats.failed, 1)
        self.assertEqual(stats.saved, 0)
        self.assertEqual(stats.recompressed, 0)
        self.assertEqual(stats.bytes_before, 0)
        self.assertEqual(stats.bytes_after, 0)
        self.assertEqual(list(self.images_dir.iterdir()), [])
        self.assertIn(f"IMG error url={url} err=disk full", self._messages())

    def test_rerun_overwrites(self):
        url = "https://example.com/same.png"
        routes = {url: (200, "image/png", make_image("PNG", (300, 300)))}
        self._ingest(routes, [url])
        self._ingest(routes, [url])
        self.assertEqual(len(list(self.images_dir.iterdir())), 1)


if __name__ == "__main__":
    unittest.main()
