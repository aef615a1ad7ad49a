"""
数据模型
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class ImageCandidate(BaseModel):
    """已发现、尚未抓取的图片地址"""
    location: str
    discovered_from: Optional[str] = None


class FetchedImage(BaseModel):
    """抓取并解码后的图片（仅在处理过程中存在）"""
    content: bytes
    content_type: str = ""
    width: Optional[int] = None
    height: Optional[int] = None
    format: str = ""


class StoredImage(BaseModel):
    """内容目录中的已保存图片"""
    name: str
    size_bytes: int
    mtime: str


class RunStats(BaseModel):
    """单次运行的图片统计"""
    found: int = 0
    saved: int = 0
    skipped_small: int = 0
    failed: int = 0
    recompressed: int = 0
    bytes_before: int = 0
    bytes_after: int = 0


class ScrollStats(BaseModel):
    """滚动采集统计"""
    scrolls: int = 0
    collected: int = 0
    ads_skipped: int = 0
    max_images: int = 0
    max_scrolls: int = 0


class JobParameters(BaseModel):
    """启动一次运行的参数（原样记录）"""
    mode: str = "site"
    url: Optional[str] = None
    query: Optional[str] = None
    depth: Optional[int] = None
    min_width: Optional[int] = None
    quality: Optional[Any] = None
    cookie: Optional[str] = None
    same_origin: Optional[bool] = None
    max_images: Optional[int] = None
    max_scrolls: Optional[int] = None
    headful: Optional[bool] = None


class JobState(BaseModel):
    """任务状态（每个 JobRunner 一份）"""
    running: bool = False
    pid: Optional[int] = None
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    exit_code: Optional[int] = None
    last_error: Optional[str] = None
    command: Optional[List[str]] = None
    parameters: Optional[JobParameters] = None


class Progress(BaseModel):
    """从活动记录重建的进度"""
    mode: str
    processed: int = 0
    saved: int = 0
    skipped: int = 0
    failed: int = 0
    collected: int = 0
    target: Optional[int] = None
    percent: Optional[int] = None
    elapsed_seconds: Optional[int] = None
    eta_seconds: Optional[int] = None


class RunReport(BaseModel):
    """运行结束时写入的 JSON 报告"""
    mode: str
    start_url: str = ""
    query: str = ""
    max_depth: int
    max_images: int
    max_scrolls: int
    min_width: int
    quality: int
    same_origin: bool
    finished_at: str
    pinterest_stats: Optional[ScrollStats] = None
    stats: Dict[str, int] = Field(default_factory=dict)
