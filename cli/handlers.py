"""
CLI命令处理函数
"""
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from loguru import logger
from tqdm import tqdm

from config import config as default_config, Config
from core.activity_log import ActivityLog, format_timestamp
from core.http_client import create_session
from core.ingestor import ImageIngestor, normalize_quality
from core.job_runner import JobRunner
from core.models import JobParameters, RunReport, ScrollStats
from core.progress import ProgressEstimator
from core.storage import ImageStore, ReportStore
from spiders.scroll_collector import ScrollCollector
from spiders.site_crawler import SiteCrawler

MODES = ('site', 'pinterest')
DEFAULT_PINTEREST_URL = 'https://www.pinterest.com'
MAX_LOG_LINES = 2000


def parameters_from_args(args) -> JobParameters:
    """从命令行参数构造任务参数（原样记录，不填默认值）"""
    return JobParameters(
        mode=(getattr(args, 'mode', None) or 'site').lower(),
        url=getattr(args, 'url', None),
        query=getattr(args, 'query', None),
        depth=getattr(args, 'depth', None),
        min_width=getattr(args, 'min_width', None),
        quality=getattr(args, 'quality', None),
        cookie=getattr(args, 'cookie', None),
        same_origin=getattr(args, 'same_origin', None),
        max_images=getattr(args, 'max_images', None),
        max_scrolls=getattr(args, 'max_scrolls', None),
        headful=getattr(args, 'headful', None),
    )


def _usage_error(params: JobParameters) -> Optional[str]:
    if params.mode not in MODES:
        return f"未知模式: {params.mode}（可选: site / pinterest）"
    if params.mode == 'site' and not params.url:
        return "用法: image_crawler.py run --mode site --url https://example.com [--depth 2] [--min-width 200]"
    if params.mode == 'pinterest' and not params.url and not params.query:
        return '用法: image_crawler.py run --mode pinterest --query "interior design" [--max-images 80] [--headful]'
    return None


def _pick(value, fallback):
    return fallback if value is None else value


async def handle_run(args, config: Optional[Config] = None) -> int:
    """
    处理 run 子命令：发现 → 入库 → 报告

    Returns:
        退出码（参数错误为 1）
    """
    config = config or default_config
    params = parameters_from_args(args)
    error = _usage_error(params)
    if error:
        print(f"❌ {error}", file=sys.stderr)
        return 1

    max_depth = _pick(params.depth, config.discovery.max_depth)
    min_width = _pick(params.min_width, config.image.min_width)
    quality = normalize_quality(_pick(params.quality, config.image.quality))
    same_origin = _pick(params.same_origin, config.discovery.same_origin)
    max_images = _pick(params.max_images, config.discovery.max_images)
    max_scrolls = _pick(params.max_scrolls, config.discovery.max_scrolls)
    show_progress = sys.stderr.isatty()

    paths = config.paths
    paths.ensure()
    activity = ActivityLog(paths.activity_log_path)

    print(f"\n📌 命令: 爬取图片 (mode={params.mode})")
    activity.log(f"RUN start mode={params.mode} minWidth={min_width} quality={quality}")

    scroll_stats = None
    if params.mode == 'pinterest':
        collector = ScrollCollector(config, activity)
        try:
            urls, scroll_stats = await collector.collect(
                query=params.query,
                start_url=params.url,
                max_images=max_images,
                max_scrolls=max_scrolls,
                headful=bool(params.headful),
            )
        except Exception as e:
            logger.error(f"❌ 图片采集失败: {e!r}")
            urls = []
            scroll_stats = ScrollStats(max_images=max_images, max_scrolls=max_scrolls)
        activity.log(f"PINTEREST collected_total={len(urls)}")
        pages_visited = 1
        images_found = len(urls)

        session = create_session(config.crawler, params.cookie, params.url or DEFAULT_PINTEREST_URL)
        async with session:
            ingestor = ImageIngestor(session, activity, config, show_progress=show_progress)
            run_stats = await ingestor.ingest(urls, paths.images_dir, min_width, quality)
    else:
        async with SiteCrawler(config, activity, cookie=params.cookie, start_url=params.url) as crawler:
            try:
                candidates = await crawler.crawl(params.url, max_depth, same_origin)
            except Exception as e:
                logger.error(f"❌ 站点爬取失败: {e!r}")
                candidates = []
            pages_visited = crawler.stats['pages_visited']
            images_found = len(candidates)

            ingestor = ImageIngestor(crawler.session, activity, config, show_progress=show_progress)
            run_stats = await ingestor.ingest(candidates, paths.images_dir, min_width, quality)

    stats = {
        'pages_visited': pages_visited,
        'images_found': images_found,
        **run_stats.model_dump(),
    }
    report = RunReport(
        mode=params.mode,
        start_url=params.url or '',
        query=params.query or '',
        max_depth=max_depth,
        max_images=max_images,
        max_scrolls=max_scrolls,
        min_width=min_width,
        quality=quality,
        same_origin=same_origin,
        finished_at=format_timestamp(datetime.now(timezone.utc)),
        pinterest_stats=scroll_stats,
        stats=stats,
    )
    ReportStore(paths.report_path).write(report)

    activity.log(f"RUN end pagesVisited={pages_visited} imagesFound={images_found} imagesSaved={run_stats.saved}")
    print_statistics(stats, config)
    return 0


async def handle_watch(args, config: Optional[Config] = None) -> int:
    """
    处理 watch 子命令：以子进程启动运行，轮询活动记录显示进度

    Returns:
        子进程退出码；无法启动时为 1
    """
    config = config or default_config
    params = parameters_from_args(args)
    error = _usage_error(params)
    if error:
        print(f"❌ {error}", file=sys.stderr)
        return 1

    runner = JobRunner(config)
    result = await runner.try_start(params)
    if not result.accepted:
        print(f"❌ 任务未启动: {result.reason} {result.state.last_error or ''}".rstrip())
        return 1

    print(f"\n📌 任务已启动: pid={result.state.pid}")
    activity = ActivityLog(config.paths.activity_log_path, echo=False)
    estimator = ProgressEstimator(activity, config.job.tail_lines, config.job.clock_skew)
    interval = args.interval if getattr(args, 'interval', None) else config.job.poll_interval

    exit_code = None
    with tqdm(total=None, desc=f"{params.mode}", unit="img") as bar:
        while True:
            exit_code = await runner.wait(timeout=interval)
            progress = estimator.estimate(runner.current_state())
            if progress is not None:
                if progress.target:
                    bar.total = progress.target
                bar.n = progress.processed if not progress.target else min(progress.processed, progress.target)
                bar.set_postfix(
                    saved=progress.saved,
                    skipped=progress.skipped,
                    failed=progress.failed,
                    eta=progress.eta_seconds if progress.eta_seconds is not None else '?',
                )
                bar.refresh()
            if runner.completion.done():
                break

    state = runner.current_state()
    if exit_code == 0:
        print("✅ 任务完成")
    else:
        print(f"❌ 任务失败: {state.last_error}")
    return exit_code if exit_code is not None else 1


async def handle_report(args, config: Optional[Config] = None) -> int:
    """处理 report 子命令"""
    config = config or default_config
    report = ReportStore(config.paths.report_path).read()
    if report is None:
        print("ℹ️  暂无运行报告")
        return 0
    print(json.dumps(report, ensure_ascii=False, indent=2))
    return 0


async def handle_logs(args, config: Optional[Config] = None) -> int:
    """处理 logs 子命令（行数限制在 1-2000）"""
    config = config or default_config
    lines = getattr(args, 'lines', None) or 200
    lines = max(1, min(MAX_LOG_LINES, lines))
    for line in ActivityLog(config.paths.activity_log_path, echo=False).tail(lines):
        print(line)
    return 0


async def handle_images(args, config: Optional[Config] = None) -> int:
    """处理 images 子命令"""
    config = config or default_config
    images = ImageStore(config.paths.images_dir).list_images()
    if not images:
        print("ℹ️  暂无已保存的图片")
        return 0
    for image in images:
        print(f"{image.mtime}  {image.size_bytes:>10}  {image.name}")
    print(f"\n共 {len(images)} 张图片")
    return 0


async def handle_delete(args, config: Optional[Config] = None) -> int:
    """处理 delete 子命令"""
    config = config or default_config
    result = ImageStore(config.paths.images_dir).delete_batch(args.names)
    for item in result['results']:
        if item['ok']:
            print(f"✅ 已删除: {item['name']}")
        else:
            print(f"❌ {item['name']}: {item['error']}")
    print(f"\n删除 {result['deleted']} 个，失败 {result['failed']} 个")
    if result['failed']:
        logger.warning(f"⚠️  {result['failed']} 个文件删除失败")
    return 0 if result['ok'] else 1


def print_statistics(stats: Dict[str, Any], config: Optional[Config] = None):
    """输出统计信息"""
    config = config or default_config
    print("\n" + "=" * 60)
    print("📊 爬取统计:")
    print(f"  访问页面: {stats['pages_visited']}")
    print(f"  发现图片: {stats['images_found']}")
    print(f"  保存成功: {stats['saved']}")
    print(f"  尺寸过小: {stats['skipped_small']}")
    print(f"  处理失败: {stats['failed']}")
    print(f"  重新压缩: {stats['recompressed']}")
    print(f"  压缩前大小: {stats['bytes_before']} bytes")
    print(f"  压缩后大小: {stats['bytes_after']} bytes")
    print(f"  输出目录: {config.paths.images_dir}")
    print(f"  活动记录: {config.paths.activity_log_path}")
    print("=" * 60)
