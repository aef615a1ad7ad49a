"""
进度估算模块

运行单元是独立子进程，没有结构化的进度通道；
这里通过读取活动记录尾部并按行模式计数来重建完成百分比与预计剩余时间。
"""
import math
import re
from datetime import datetime, timedelta
from typing import Optional
from loguru import logger

from core.activity_log import ActivityLog, parse_line, parse_timestamp, utc_now
from core.models import JobState, Progress

SCROLL_RE = re.compile(r'PINTEREST scroll=\d+\s+collected=(\d+)')
TOTAL_RE = re.compile(r'PINTEREST collected_total=(\d+)')

FAILED_PREFIXES = ('IMG failed_non_image_or_status', 'IMG error')


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ProgressEstimator:
    """
    进度估算器（只读活动记录）

    - processed = saved + skipped_small + failed
    - pinterest 模式：目标数为 max_images，出现 collected_total 后以其为准
    - site 模式：目标数未知，percent/eta 为 None
    """

    def __init__(self, activity: ActivityLog, tail_lines: int = 4000, clock_skew: float = 1.0):
        self.activity = activity
        self.tail_lines = tail_lines
        self.clock_skew = clock_skew

    def estimate(self, state: JobState, now: Optional[datetime] = None) -> Optional[Progress]:
        """
        估算进度

        Args:
            state: 任务状态快照
            now: 当前时间（测试用）

        Returns:
            Progress；任务从未启动时返回 None
        """
        if not state.started_at:
            return None

        started_at = parse_timestamp(state.started_at)
        ended_at = parse_timestamp(state.ended_at) if state.ended_at else None
        reference = ended_at or now or utc_now()
        elapsed = None
        if started_at is not None:
            elapsed = max(0, _round_half_up((reference - started_at).total_seconds()))

        parameters = state.parameters
        mode = (parameters.mode if parameters else None) or 'site'
        threshold = started_at - timedelta(seconds=self.clock_skew) if started_at else None

        saved = skipped = failed = 0
        collected = 0
        collected_total = None

        for line in self.activity.tail(self.tail_lines):
            timestamp, message = parse_line(line)
            if timestamp is not None and threshold is not None and timestamp < threshold:
                continue

            if message.startswith('IMG saved'):
                saved += 1
            elif message.startswith('IMG skipped_small'):
                skipped += 1
            elif message.startswith(FAILED_PREFIXES):
                failed += 1

            scroll_match = SCROLL_RE.search(message)
            if scroll_match:
                collected = max(collected, int(scroll_match.group(1)))

            total_match = TOTAL_RE.search(message)
            if total_match:
                collected_total = int(total_match.group(1))

        processed = saved + skipped + failed

        target = 0
        if mode == 'pinterest':
            target = int((parameters.max_images if parameters else None) or 0)
            if collected_total:
                target = collected_total
            elif collected > 0:
                target = max(target, collected)

        percent = None
        if target > 0:
            percent = min(100, _round_half_up(processed * 100 / target))

        eta = None
        if state.running and target > 0 and elapsed is not None and 0 < processed < target:
            eta = _round_half_up(elapsed * (target - processed) / processed)
        if not state.running and percent is not None:
            eta = 0

        progress = Progress(
            mode=mode,
            processed=processed,
            saved=saved,
            skipped=skipped,
            failed=failed,
            collected=collected,
            target=target if target > 0 else None,
            percent=percent,
            elapsed_seconds=elapsed,
            eta_seconds=eta,
        )
        logger.debug(f"进度: {progress.model_dump()}")
        return progress
