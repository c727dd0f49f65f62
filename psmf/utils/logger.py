#!filepath: psmf/utils/logger.py
import os
import sys
from functools import wraps
from time import perf_counter
from loguru import logger
from typing import Callable

_LOGGER_CONFIGURED = False


class Logging:
    """
    训练任务日志模块（loguru 封装）
    ---------------------------------------
    - 按日期切割 / 保留周期
    - 可选 stderr console sink
    - 函数级 catch 装饰器（记录异常 + 耗时，异常继续抛出）
    ---------------------------------------
    worker / server 线程共享同一个 logger，sink 使用 enqueue=True。
    """

    def __init__(
        self,
        log_dir: str = "logs",
        rotation: str = "1 day",
        retention: str = "30 days",
        log_level: str = "INFO",
        console: bool = False,
    ):
        self.log_dir = log_dir
        self.rotation = rotation
        self.retention = retention
        self.level = log_level
        self.console = console

        os.makedirs(self.log_dir, exist_ok=True)
        self._configure()

    def _configure(self) -> None:
        global _LOGGER_CONFIGURED

        logger.remove()

        logger.add(
            sink=f"{self.log_dir}/{{time:YYYY-MM-DD}}.log",
            rotation=self.rotation,
            retention=self.retention,
            level=self.level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {thread.name} | {message}",
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

        if self.console:
            logger.add(
                sys.stderr,
                level=self.level,
                format="<green>{time:HH:mm:ss}</green> | {level} | {message}",
            )

        logger.info("-----------psmf logger initialized-----------")
        _LOGGER_CONFIGURED = True

    # ----------- 日志方法 -----------
    def debug(self, msg: str, *args, **kwargs):
        logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        print(msg)
        logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        print(msg)
        logger.error(msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        logger.exception(msg, *args, **kwargs)

    # ---------- 日志装饰器 ----------
    def catch(self, msg: str = "Exception occurred", log_time: bool = True) -> Callable:
        """
        用法：
            @logs.catch("offline MF job failed")
            def run(...): ...
        """

        def decorator(func: Callable):
            @wraps(func)
            def wrapper(*args, **kwargs):
                start = perf_counter()

                try:
                    result = func(*args, **kwargs)
                except Exception:
                    logger.exception(f"[ERROR] {func.__name__}: {msg}")
                    raise

                if log_time:
                    cost = perf_counter() - start
                    logger.info(f"[TIME] {func.__name__} took {cost:.4f}s")

                return result

            return wrapper

        return decorator


def init_logging(cfg) -> Logging:
    """
    用 LogConfig 原地重新配置全局 logs（CLI 入口调用一次）。
    已经 `from psmf import logs` 的模块拿到的是同一个实例。
    """
    logs.log_dir = cfg.dir
    logs.rotation = cfg.rotation
    logs.retention = cfg.retention
    logs.level = cfg.level
    logs.console = cfg.console

    os.makedirs(logs.log_dir, exist_ok=True)
    logs._configure()
    return logs


# 默认全局 logs（可被 init_logging 替换）
logs = Logging()
