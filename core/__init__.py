"""
核心模块

包含基础组件：
- activity_log: 活动记录
- http_client: HTTP 会话与抓取
- ingestor: 图片入库
- storage: 图片目录与报告
- job_runner: 单任务运行器
- progress: 进度估算
"""
from .activity_log import ActivityLog
from .ingestor import ImageIngestor
from .storage import ImageStore, ReportStore
from .job_runner import JobRunner
from .progress import ProgressEstimator

__all__ = [
    'ActivityLog',
    'ImageIngestor',
    'ImageStore',
    'ReportStore',
    'JobRunner',
    'ProgressEstimator',
]
