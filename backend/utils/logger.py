"""
Insight Desk 日誌設定
主控台 + 輪轉檔案 (logs/insight_desk.log)，各模組以 get_logger(__name__) 取得 logger
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

import config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
CONSOLE_FORMAT = "%(levelname)s - %(name)s - %(message)s"

# 上傳與 LLM 呼叫時會大量輸出 DEBUG 的函式庫
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "multipart", "asyncio")


class LoggerFactory:
    """只設定一次 root logger，之後的 get_logger 共用同一組 handler"""

    _configured_file = None

    @classmethod
    def configure(cls, level: str = None, log_dir: str = None) -> str:
        """
        設定 root logger，回傳日誌檔路徑

        重複呼叫且路徑相同時不會再加 handler。
        """
        log_dir = log_dir or config.LOG_DIR
        log_file = os.path.join(log_dir, "insight_desk.log")
        if cls._configured_file == log_file:
            return log_file

        root = logging.getLogger()
        for handler in list(root.handlers):
            if getattr(handler, "_insight_desk", False):
                root.removeHandler(handler)
                handler.close()

        level_name = (level or config.LOG_LEVEL).upper()
        root.setLevel(getattr(logging, level_name, logging.INFO))

        console = logging.StreamHandler(sys.stdout)
        console.setLevel(logging.INFO)
        console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        console._insight_desk = True
        root.addHandler(console)

        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
            )
        except OSError as e:
            # 唯讀環境仍可只用主控台輸出
            root.warning(f"無法建立日誌檔 {log_file}: {e}")
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(
                logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
            )
            file_handler._insight_desk = True
            root.addHandler(file_handler)

        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

        cls._configured_file = log_file
        return log_file

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        if cls._configured_file is None:
            cls.configure()
        return logging.getLogger(name)


def get_logger(name: str) -> logging.Logger:
    return LoggerFactory.get_logger(name)
