"""
活动记录模块

运行单元写入的追加式文本记录，每行格式：
    [ISO8601时间戳] 消息

进度估算器只读取该文件，外部工具依赖此格式重建进度，请勿修改。
"""
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Tuple
from loguru import logger

LINE_PATTERN = re.compile(r'^\[([^\]]+)\]\s+(.*)$')


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """格式化为带毫秒的 UTC ISO8601（如 2024-05-01T10:00:00.000Z）"""
    return moment.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(raw: str) -> Optional[datetime]:
    """解析 ISO8601 时间戳，失败返回 None"""
    text = raw.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def parse_line(line: str) -> Tuple[Optional[datetime], str]:
    """
    解析一行活动记录

    Returns:
        (时间戳, 消息)；不符合格式的行返回 (None, 原始行)
    """
    match = LINE_PATTERN.match(line)
    if not match:
        return None, line
    return parse_timestamp(match.group(1)), match.group(2)


class ActivityLog:
    """
    活动记录写入/读取

    Example:
        activity = ActivityLog(Path("data/site/activity.log"))
        activity.log("RUN start mode=site minWidth=200 quality=75")
        lines = activity.tail(200)
    """

    def __init__(self, path: Path, clock: Callable[[], datetime] = utc_now, echo: bool = True):
        self.path = Path(path)
        self.clock = clock
        self.echo = echo

    def log(self, message: str) -> str:
        """追加一行并返回完整行"""
        line = f"[{format_timestamp(self.clock())}] {message}"
        if self.echo:
            logger.info(line)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'a', encoding='utf-8') as f:
            f.write(line + '\n')
        return line

    def __call__(self, message: str) -> str:
        return self.log(message)

    def tail(self, max_lines: int) -> List[str]:
        """读取最后 max_lines 行（文件不存在时返回空列表）"""
        try:
            raw = self.path.read_text(encoding='utf-8', errors='replace')
        except FileNotFoundError:
            return []
        lines = [line for line in raw.split('\n') if line]
        if max_lines <= 0:
            return []
        return lines[-max_lines:]
