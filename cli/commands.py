"""
CLI命令定义（argparse）
"""
import argparse


def parse_bool(value) -> bool:
    """解析 true/false 形式的参数（只有 "false"/"0"/"no" 视为假）"""
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in ('false', '0', 'no', 'off')


def _add_run_arguments(parser: argparse.ArgumentParser):
    """run / watch 共用的运行参数"""
    parser.add_argument('--mode', type=str, default='site',
                        help='运行模式：site（站点爬取）或 pinterest（滚动采集）')
    parser.add_argument('--url', type=str, default=None,
                        help='起始 URL（site 必需；pinterest 可替代 --query）')
    parser.add_argument('--query', type=str, default=None,
                        help='（仅 pinterest）搜索关键词')
    parser.add_argument('--depth', type=int, default=None,
                        help='（仅 site）最大深度（默认：2）')
    parser.add_argument('--min-width', dest='min_width', type=int, default=None,
                        help='最小图片宽度（默认：W_MIN 或 200）')
    parser.add_argument('--q', '--quality', dest='quality', type=str, default=None,
                        help='重新压缩质量 1-100（默认：QUALITY 或 75）')
    parser.add_argument('--cookie', type=str, default=None,
                        help='Cookie 字符串，如 "a=b; c=d"')
    parser.add_argument('--same-origin', dest='same_origin', type=parse_bool, default=None,
                        help='（仅 site）只跟随同源链接 true|false（默认：true）')
    parser.add_argument('--max-images', dest='max_images', type=int, default=None,
                        help='（仅 pinterest）最多收集图片数（默认：120）')
    parser.add_argument('--max-scrolls', dest='max_scrolls', type=int, default=None,
                        help='（仅 pinterest）最多滚动次数（默认：50）')
    parser.add_argument('--headful', type=parse_bool, nargs='?', const=True, default=None,
                        help='（仅 pinterest）显示浏览器窗口')


def create_parser() -> argparse.ArgumentParser:
    """
    创建命令行参数解析器

    Returns:
        ArgumentParser 实例
    """
    parser = argparse.ArgumentParser(
        prog='image_crawler.py',
        description='图片爬虫（站点爬取 / 滚动画廊采集）',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
示例:
  # 站点爬取（深度 2，宽度 >= 300）
  python image_crawler.py run --mode site --url https://example.com --depth 2 --min-width 300
  python image_crawler.py run --url https://example.com --cookie "a=b; c=d" --same-origin false

  # 滚动采集
  python image_crawler.py run --mode pinterest --query "interior design" --max-images 80 --headful

  # 以子进程方式运行并显示进度
  python image_crawler.py watch --mode pinterest --query "interior design"

  # 查看结果
  python image_crawler.py report
  python image_crawler.py logs --lines 100
  python image_crawler.py images
  python image_crawler.py delete 0a1b2c3d4e-800x600-photo.jpg
        '''
    )

    # 创建子命令
    subparsers = parser.add_subparsers(dest='command', help='子命令', required=True)

    # ============================================================================
    # 子命令: run - 在当前进程中执行一次发现 + 入库
    # ============================================================================
    parser_run = subparsers.add_parser('run', help='执行一次爬取（发现 + 入库 + 报告）')
    _add_run_arguments(parser_run)

    # ============================================================================
    # 子命令: watch - 以子进程启动一次运行并轮询进度
    # ============================================================================
    parser_watch = subparsers.add_parser('watch', help='以子进程启动运行并显示进度')
    _add_run_arguments(parser_watch)
    parser_watch.add_argument('--interval', type=float, default=None,
                              help='进度刷新间隔（秒，默认：2）')

    # ============================================================================
    # 子命令: report / logs / images / delete - 查看与管理结果
    # ============================================================================
    subparsers.add_parser('report', help='显示最近一次运行报告')

    parser_logs = subparsers.add_parser('logs', help='显示活动记录尾部')
    parser_logs.add_argument('--lines', type=int, default=200,
                             help='行数（1-2000，默认：200）')

    subparsers.add_parser('images', help='列出已保存的图片（最新在前）')

    parser_delete = subparsers.add_parser('delete', help='按文件名删除已保存的图片')
    parser_delete.add_argument('names', nargs='+', help='图片文件名')

    return parser
