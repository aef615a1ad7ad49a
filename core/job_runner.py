"""
任务运行模块

一次只运行一个抓取任务：每次运行是独立的子进程（image_crawler.py run ...），
JobRunner 持有唯一的 JobState，只在启动与结束时修改。
"""
import asyncio
import os
import sys
from typing import List, Optional
from loguru import logger

from config import config as default_config, Config
from core.activity_log import format_timestamp, utc_now
from core.models import JobParameters, JobState

# JobParameters 字段 -> run 子命令参数
ARGUMENT_FLAGS = [
    ('mode', '--mode'),
    ('url', '--url'),
    ('query', '--query'),
    ('depth', '--depth'),
    ('min_width', '--min-width'),
    ('quality', '--q'),
    ('cookie', '--cookie'),
    ('same_origin', '--same-origin'),
    ('max_images', '--max-images'),
    ('max_scrolls', '--max-scrolls'),
    ('headful', '--headful'),
]


def build_command(parameters: JobParameters, python: str, entry_script: str) -> List[str]:
    """
    构造子进程命令行

    空值（None / 空字符串）不传递；布尔值写成 true/false
    """
    command = [python, str(entry_script), 'run']
    for field, flag in ARGUMENT_FLAGS:
        value = getattr(parameters, field)
        if value is None or value == '':
            continue
        if isinstance(value, bool):
            value = 'true' if value else 'false'
        command.extend([flag, str(value)])
    return command


class StartResult:
    """try_start 的结果"""

    def __init__(self, accepted: bool, state: JobState, reason: Optional[str] = None):
        self.accepted = accepted
        self.reason = reason
        self.state = state

    def __repr__(self):
        return f"StartResult(accepted={self.accepted}, reason={self.reason!r})"


class JobRunner:
    """
    任务运行器（单任务）

    状态机：Idle → Running → Idle
    - 运行中（或正在启动）时再次启动会被拒绝，状态不变
    - 启动失败记录 last_error，不进入 Running
    - 子进程结束由 watcher 任务观测，记录 ended_at / exit_code

    Example:
        runner = JobRunner()
        result = await runner.try_start(JobParameters(mode="site", url="https://example.com"))
        if result.accepted:
            exit_code = await runner.wait()
    """

    def __init__(self, config: Optional[Config] = None, python_executable: str = sys.executable):
        self.config = config or default_config
        self.python_executable = python_executable
        self.state = JobState()
        self._launching = False
        self._process: Optional[asyncio.subprocess.Process] = None
        self._watcher: Optional[asyncio.Task] = None
        self._completion: Optional[asyncio.Future] = None

    def current_state(self) -> JobState:
        """返回状态快照"""
        return self.state.model_copy(deep=True)

    @property
    def completion(self) -> Optional[asyncio.Future]:
        """当前任务的完成 future（结果为退出码）"""
        return self._completion

    async def try_start(self, parameters: JobParameters) -> StartResult:
        """
        尝试启动任务

        Returns:
            StartResult；运行中返回 reason='already_running'，启动失败返回 reason='launch_failed'
        """
        if self.state.running or self._launching:
            logger.warning("⚠️  已有任务在运行，拒绝启动")
            return StartResult(False, self.current_state(), 'already_running')

        self._launching = True
        try:
            command = build_command(parameters, self.python_executable, self.config.job.entry_script)
            self.state = JobState(
                running=False,
                started_at=format_timestamp(utc_now()),
                command=command,
                parameters=parameters.model_copy(deep=True),
            )

            env = dict(os.environ)
            env['DATA_DIR'] = str(self.config.paths.data_dir)

            logger.info(f"🚀 启动任务: {' '.join(command)}")
            try:
                process = await asyncio.create_subprocess_exec(
                    *command,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=env,
                )
            except OSError as e:
                logger.error(f"❌ 任务启动失败: {e}")
                self.state.last_error = str(e)
                self.state.ended_at = format_timestamp(utc_now())
                return StartResult(False, self.current_state(), 'launch_failed')

            self._process = process
            self.state.running = True
            self.state.pid = process.pid
            self._completion = asyncio.get_running_loop().create_future()
            self._watcher = asyncio.create_task(self._watch(process, self._completion))
            return StartResult(True, self.current_state())
        finally:
            self._launching = False

    async def _forward(self, stream: Optional[asyncio.StreamReader], pid: int):
        """把子进程输出转发到日志"""
        if stream is None:
            return
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                # 超长行已被 readline 丢弃，继续读取后续输出
                logger.warning(f"[crawler:{pid}] 输出行超过缓冲上限，已丢弃")
                continue
            if not line:
                break
            text = line.decode('utf-8', errors='replace').rstrip()
            if text:
                logger.info(f"[crawler:{pid}] {text}")

    async def _watch(self, process: asyncio.subprocess.Process, completion: asyncio.Future):
        """等待子进程结束并记录结果"""
        exit_code = None
        try:
            results = await asyncio.gather(
                self._forward(process.stdout, process.pid),
                self._forward(process.stderr, process.pid),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, Exception):
                    logger.warning(f"⚠️ 输出转发中断: pid={process.pid} {result!r}")
            # 子进程退出前任务保持运行状态
            exit_code = await process.wait()
        finally:
            self.state.running = False
            self.state.ended_at = format_timestamp(utc_now())
            self.state.exit_code = exit_code
            if exit_code != 0:
                self.state.last_error = f"exit code {exit_code}"
                logger.error(f"❌ 任务异常结束: pid={process.pid} exit_code={exit_code}")
            else:
                logger.success(f"✅ 任务完成: pid={process.pid}")
            if not completion.done():
                completion.set_result(exit_code)

    async def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        等待当前任务结束

        Returns:
            退出码；没有任务或超时返回 None
        """
        if self._completion is None:
            return None
        try:
            return await asyncio.wait_for(asyncio.shield(self._completion), timeout)
        except asyncio.TimeoutError:
            return None
