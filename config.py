"""
配置管理模块 - 图片爬虫
统一配置管理：站点爬取、滚动采集、图片处理、任务与日志
"""
from pydantic import BaseModel, Field
from typing import Optional, List
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# 项目根目录
BASE_DIR = Path(__file__).parent


class CrawlerConfig(BaseModel):
    """HTTP 抓取配置"""
    request_timeout: int = Field(default=15, description="单次请求超时（秒）")
    download_delay: float = Field(default=0.0, description="页面之间的延迟（秒）")
    rotate_user_agent: bool = Field(default=True, description="是否轮换UA")


class ImageConfig(BaseModel):
    """图片配置"""
    min_width: int = Field(default=200, description="最小宽度")
    quality: int = Field(default=75, description="重新压缩质量 (1-100)")
    recompress_formats: List[str] = Field(
        default_factory=lambda: ["jpg", "jpeg", "png", "webp", "avif", "tiff"],
        description="会被重新压缩的图片格式"
    )


class BrowserConfig(BaseModel):
    """滚动采集浏览器配置"""
    headless: bool = Field(default=True, description="是否无头模式")
    window_width: int = Field(default=1440, description="窗口宽度")
    window_height: int = Field(default=900, description="窗口高度")
    user_agent: str = Field(
        default="Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
        description="浏览器UA"
    )
    page_load_timeout: int = Field(default=60, description="页面加载超时（秒）")
    settle_delay: float = Field(default=1.2, description="页面打开后的等待（秒）")
    consent_timeout: float = Field(default=2.5, description="同意弹窗查找超时（秒）")
    scroll_step: int = Field(default=2200, description="每次滚动像素")
    pause_min: float = Field(default=0.9, description="滚动后最短等待（秒）")
    pause_max: float = Field(default=1.4, description="滚动后最长等待（秒）")
    min_element_size: int = Field(default=120, description="图片元素最小宽高（像素，需严格大于）")
    ad_keywords: List[str] = Field(
        default_factory=lambda: ["sponsored", "promoted", "ad", "ads", "sponsorizzato", "pubblicita"],
        description="广告容器关键词"
    )
    search_url: str = Field(
        default="https://www.pinterest.com/search/pins/?q={query}",
        description="搜索页URL模板"
    )


class DiscoveryConfig(BaseModel):
    """发现阶段默认参数"""
    max_depth: int = Field(default=2, description="站点爬取最大深度")
    same_origin: bool = Field(default=True, description="只跟随同源链接")
    max_images: int = Field(default=120, description="滚动采集最大图片数")
    max_scrolls: int = Field(default=50, description="滚动采集最大滚动次数")


class PathsConfig(BaseModel):
    """数据路径配置"""
    data_dir: Path = Field(default=BASE_DIR / "data" / "site", description="数据目录")

    @property
    def images_dir(self) -> Path:
        return self.data_dir / "images"

    @property
    def report_path(self) -> Path:
        return self.data_dir / "crawl-report.json"

    @property
    def activity_log_path(self) -> Path:
        return self.data_dir / "activity.log"

    def ensure(self):
        """创建数据目录"""
        self.images_dir.mkdir(parents=True, exist_ok=True)


class JobConfig(BaseModel):
    """任务与进度估算配置"""
    tail_lines: int = Field(default=4000, description="进度估算读取的日志尾部行数")
    clock_skew: float = Field(default=1.0, description="时钟偏差容忍（秒）")
    poll_interval: float = Field(default=2.0, description="watch 轮询间隔（秒）")
    entry_script: Path = Field(default=BASE_DIR / "image_crawler.py", description="子进程入口脚本")


class LogConfig(BaseModel):
    """日志配置"""
    log_level: str = Field(default="INFO", description="日志级别")
    log_dir: Path = Field(default=BASE_DIR / "logs", description="日志目录")
    log_file: str = Field(default="image_crawler.log", description="日志文件名")
    rotation: str = Field(default="100 MB", description="日志轮转大小")
    retention: str = Field(default="30 days", description="日志保留时间")


class Config(BaseModel):
    """全局配置"""
    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    job: JobConfig = Field(default_factory=JobConfig)
    log: LogConfig = Field(default_factory=LogConfig)


def _env_int(name: str, default: int) -> int:
    """读取整型环境变量，非法值回退默认值"""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(float(raw))
    except ValueError:
        return default


def load_config_from_env(data_dir: Optional[str] = None) -> Config:
    """从环境变量加载配置"""
    config_data = {
        "crawler": {
            "request_timeout": _env_int("REQUEST_TIMEOUT", 15),
        },
        "image": {
            "min_width": _env_int("W_MIN", 200),
            "quality": _env_int("QUALITY", 75),
        },
        "paths": {
            "data_dir": Path(data_dir or os.getenv("DATA_DIR", str(BASE_DIR / "data" / "site"))),
        },
        "log": {
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
        }
    }
    return Config(**config_data)


# 全局配置实例（默认从环境变量加载）
config = load_config_from_env()
