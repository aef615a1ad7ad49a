"""
图片爬虫 - 命令行入口
支持站点广度优先爬取与滚动画廊（Pinterest）采集
"""
import asyncio
import sys
from loguru import logger

from config import config, LogConfig
from cli import (
    create_parser,
    handle_run,
    handle_watch,
    handle_report,
    handle_logs,
    handle_images,
    handle_delete,
)

HANDLERS = {
    'run': handle_run,
    'watch': handle_watch,
    'report': handle_report,
    'logs': handle_logs,
    'images': handle_images,
    'delete': handle_delete,
}


def setup_logging(log_config: LogConfig):
    """配置日志：彩色终端输出 + 按大小轮转的文件日志"""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=log_config.log_level,
        colorize=True
    )
    log_config.log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_config.log_dir / log_config.log_file,
        rotation=log_config.rotation,
        retention=log_config.retention,
        level="DEBUG",
        encoding="utf-8"
    )


async def main(argv=None) -> int:
    """主函数 - 子命令模式"""
    parser = create_parser()
    args = parser.parse_args(argv)
    setup_logging(config.log)
    return await HANDLERS[args.command](args, config)


def cli_main():
    """控制台脚本入口"""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli_main()
