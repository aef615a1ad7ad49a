"""
图片入库模块

对候选图片逐个执行：抓取 → 校验 → 最小宽度过滤 → 重新压缩 → 确定性命名 → 写入。
每张图片独立处理，单张失败不会中断整批。
"""
import hashlib
import io
import math
import os
import re
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union
from urllib.parse import urlsplit

import aiohttp
from bs4 import BeautifulSoup
from fake_useragent import UserAgent
from loguru import logger
from PIL import Image, ImageOps
from tqdm import tqdm

from config import config as default_config, Config
from core.activity_log import ActivityLog
from core.http_client import IMAGE_ACCEPT, TRANSPORT_ERRORS, build_headers, fetch
from core.models import FetchedImage, ImageCandidate, RunStats

DEFAULT_QUALITY = 75

CONTENT_TYPE_EXTENSIONS = {
    'image/jpeg': '.jpg',
    'image/png': '.png',
    'image/webp': '.webp',
    'image/gif': '.gif',
    'image/svg+xml': '.svg',
    'image/bmp': '.bmp',
    'image/tiff': '.tiff',
    'image/avif': '.avif',
}

FORMAT_EXTENSIONS = {
    'jpg': '.jpg',
    'jpeg': '.jpg',
    'png': '.png',
    'webp': '.webp',
    'gif': '.gif',
    'svg': '.svg',
    'bmp': '.bmp',
    'tiff': '.tiff',
    'avif': '.avif',
}

# Pillow 格式名 -> 内部格式标记
PIL_FORMATS = {
    'JPEG': 'jpeg',
    'MPO': 'jpeg',
    'PNG': 'png',
    'WEBP': 'webp',
    'GIF': 'gif',
    'BMP': 'bmp',
    'TIFF': 'tiff',
    'AVIF': 'avif',
}

_EXTENSION_RE = re.compile(r'\.[a-zA-Z0-9]{2,6}$')
_UNSAFE_RE = re.compile(r'[^a-zA-Z0-9._-]')
_SVG_LENGTH_RE = re.compile(r'^\s*([0-9]*\.?[0-9]+)\s*(px)?\s*$')


def normalize_quality(value, fallback: int = DEFAULT_QUALITY) -> int:
    """
    规范化压缩质量为 [1, 100] 的整数

    无法解析（None、非数字、NaN、无穷）时返回 fallback。
    """
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(parsed):
        return fallback
    return max(1, min(100, int(math.floor(parsed + 0.5))))


def sanitize_filename(name: str) -> str:
    return _UNSAFE_RE.sub('_', name)[:180]


def extension_for(image_format: str, content_type: str = "") -> str:
    """根据检测到的格式（优先）或 Content-Type 得到扩展名"""
    ext = FORMAT_EXTENSIONS.get((image_format or '').lower())
    if ext:
        return ext
    clean = (content_type or '').split(';')[0].strip().lower()
    return CONTENT_TYPE_EXTENSIONS.get(clean, '.img')


def build_filename(
    image_url: str,
    image_format: str,
    content_type: str,
    width: Optional[int],
    height: Optional[int]
) -> str:
    """
    生成确定性文件名：<sha1(url)前10位>-<宽>x<高>-<清洗后的文件名><扩展名>

    同一 URL 始终得到同一文件名，重复运行会覆盖而不是产生副本。
    """
    path = urlsplit(image_url).path
    base_name = os.path.basename(path) or 'image'
    base_no_ext = _EXTENSION_RE.sub('', base_name) or 'image'
    safe_base = sanitize_filename(base_no_ext)
    ext = extension_for(image_format, content_type)
    digest = hashlib.sha1(image_url.encode('utf-8')).hexdigest()[:10]
    return f"{digest}-{width or 0}x{height or 0}-{safe_base}{ext}"


def _svg_length(raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    match = _SVG_LENGTH_RE.match(raw)
    if not match:
        return None
    return int(round(float(match.group(1))))


def _looks_like_svg(data: bytes, content_type: str) -> bool:
    if 'svg' in (content_type or ''):
        return True
    head = data[:1024].lstrip().lower()
    return head.startswith(b'<svg') or (head.startswith(b'<?xml') and b'<svg' in head)


def _probe_svg(data: bytes) -> Tuple[Optional[int], Optional[int]]:
    """从根 <svg> 元素读取尺寸（width/height，缺失时用 viewBox）"""
    soup = BeautifulSoup(data, 'html.parser')
    svg = soup.find('svg')
    if svg is None:
        raise ValueError("no <svg> root element")
    width = _svg_length(svg.get('width'))
    height = _svg_length(svg.get('height'))
    if width is None or height is None:
        parts = (svg.get('viewbox') or '').replace(',', ' ').split()
        if len(parts) == 4:
            try:
                width = width or int(round(float(parts[2])))
                height = height or int(round(float(parts[3])))
            except ValueError:
                pass
    return width, height


def probe_image(data: bytes, content_type: str = "") -> Tuple[Optional[int], Optional[int], str]:
    """
    解码图片头，得到真实宽高与格式（与声明的 Content-Type 无关）

    Returns:
        (width, height, format)

    Raises:
        PIL.UnidentifiedImageError / ValueError: 无法识别的数据
    """
    if _looks_like_svg(data, content_type):
        width, height = _probe_svg(data)
        return width, height, 'svg'

    with Image.open(io.BytesIO(data)) as img:
        width, height = img.size
        image_format = PIL_FORMATS.get(img.format or '', (img.format or '').lower())
    return width, height, image_format


def recompress_image(data: bytes, image_format: str, quality, formats: Iterable[str]) -> Tuple[bytes, bool]:
    """
    按格式重新压缩图片，并根据 EXIF 自动纠正方向

    Returns:
        (输出字节, 是否经过重新压缩)；不在可压缩格式中的原样返回
    """
    fmt = (image_format or '').lower()
    if fmt not in set(formats):
        return data, False

    q = normalize_quality(quality)
    with Image.open(io.BytesIO(data)) as source:
        img = ImageOps.exif_transpose(source)
        output = io.BytesIO()

        if fmt in ('jpg', 'jpeg'):
            if img.mode not in ('RGB', 'L', 'CMYK'):
                img = img.convert('RGB')
            img.save(output, format='JPEG', quality=q, optimize=True, progressive=True)
        elif fmt == 'png':
            if img.mode not in ('RGB', 'RGBA', 'P', 'L'):
                img = img.convert('RGBA')
            if img.mode in ('RGB', 'RGBA'):
                # 调色板量化：质量越低颜色越少
                colors = max(2, min(256, int(round(256 * q / 100))))
                img = img.quantize(colors=colors, method=Image.Quantize.FASTOCTREE)
            img.save(output, format='PNG', optimize=True, compress_level=9)
        elif fmt == 'webp':
            if img.mode not in ('RGB', 'RGBA'):
                img = img.convert('RGBA')
            img.save(output, format='WEBP', quality=q, method=6)
        elif fmt == 'avif':
            if img.mode not in ('RGB', 'RGBA'):
                img = img.convert('RGBA')
            img.save(output, format='AVIF', quality=q, speed=2)
        elif fmt == 'tiff':
            if img.mode != 'RGB':
                img = img.convert('RGB')
            img.save(output, format='TIFF', compression='jpeg', quality=q)
        else:
            return data, False

    return output.getvalue(), True


def _write_atomic(path: Path, data: bytes):
    """先写临时文件再替换，读取方不会看到半个文件"""
    tmp_path = path.with_name(path.name + '.part')
    try:
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


class ImageIngestor:
    """
    图片入库器

    Example:
        async with aiohttp.ClientSession() as session:
            ingestor = ImageIngestor(session, activity)
            stats = await ingestor.ingest(candidates, Path("data/site/images"), 200, 75)
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        activity: ActivityLog,
        config: Optional[Config] = None,
        show_progress: bool = False
    ):
        self.session = session
        self.activity = activity
        self.config = config or default_config
        self.show_progress = show_progress
        self.ua = UserAgent()

    def get_headers(self):
        return build_headers(self.ua, IMAGE_ACCEPT, self.config.crawler.rotate_user_agent)

    async def fetch_image(self, url: str) -> Optional[FetchedImage]:
        """
        抓取单张图片

        传输失败、状态码不在 200-399、Content-Type 不是 image/* 时返回 None。
        """
        try:
            result = await fetch(self.session, url, headers=self.get_headers())
        except TRANSPORT_ERRORS as e:
            logger.warning(f"⚠️  图片请求失败 {url}: {e!r}")
            return None

        if not result.ok:
            logger.debug(f"HTTP {result.status}: {url}")
            return None
        if not result.is_image:
            logger.debug(f"非图片响应 ({result.content_type or 'unknown'}): {url}")
            return None

        return FetchedImage(content=result.body, content_type=result.content_type)

    async def ingest(
        self,
        candidates: List[Union[ImageCandidate, str]],
        destination_dir: Path,
        min_width: int,
        quality
    ) -> RunStats:
        """
        批量入库

        Args:
            candidates: 候选图片（可含重复，只处理首次出现的地址）
            destination_dir: 内容目录
            min_width: 最小宽度
            quality: 压缩质量（非法值按 75 处理）

        Returns:
            完整的 RunStats（从不因单张失败抛出）
        """
        stats = RunStats(found=len(candidates))
        destination_dir = Path(destination_dir)
        destination_dir.mkdir(parents=True, exist_ok=True)
        q = normalize_quality(quality)
        seen = set()

        for candidate in tqdm(candidates, desc="Ingesting", disable=not self.show_progress):
            location = candidate.location if isinstance(candidate, ImageCandidate) else str(candidate)
            if location in seen:
                continue
            seen.add(location)

            try:
                await self._ingest_one(location, destination_dir, min_width, q, stats)
            except Exception as e:
                stats.failed += 1
                logger.error(f"❌ 图片处理失败 {location}: {e}")
                self.activity.log(f"IMG error url={location} err={e}")

        logger.info(f"📊 入库统计: {stats.model_dump()}")
        return stats

    async def _ingest_one(self, location: str, destination_dir: Path, min_width: int, quality: int, stats: RunStats):
        fetched = await self.fetch_image(location)
        if fetched is None:
            stats.failed += 1
            self.activity.log(f"IMG failed_non_image_or_status url={location}")
            return

        width, height, image_format = probe_image(fetched.content, fetched.content_type)
        fetched.width, fetched.height, fetched.format = width, height, image_format
        if not width or width < min_width:
            stats.skipped_small += 1
            self.activity.log(f"IMG skipped_small url={location} width={width or 0} minWidth={min_width}")
            return

        output, recompressed = recompress_image(
            fetched.content, image_format, quality, self.config.image.recompress_formats
        )

        filename = build_filename(location, image_format, fetched.content_type, width, height)
        file_path = destination_dir / filename
        _write_atomic(file_path, output)

        # 写入成功后才计入统计
        stats.saved += 1
        if recompressed:
            stats.recompressed += 1
            stats.bytes_before += len(fetched.content)
            stats.bytes_after += len(output)
        logger.success(f"Saved: {filename} ({len(output)} bytes)")
        self.activity.log(
            f"IMG saved path={file_path} width={width} height={height or '?'} "
            f"bytesBefore={len(fetched.content)} bytesAfter={len(output)} "
            f"recompressed={'true' if recompressed else 'false'}"
        )
