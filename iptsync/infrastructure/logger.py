# -*- coding: utf-8 -*-
"""
日志服务模块
规则收敛过程中的每条变更命令都通过这里记录，控制台输出到stderr，
避免和CLI在stdout上输出的规则集、JSON结果混在一起
"""

import logging
import sys
from pathlib import Path
from typing import Optional

CONSOLE_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s'


class Logger:
    """日志服务类"""

    def __init__(self, name: str = 'iptsync', level: str = "INFO"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG)
        self.logger.handlers.clear()

        self.console_handler = logging.StreamHandler(sys.stderr)
        self.console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        self.logger.addHandler(self.console_handler)

        self.file_handler: Optional[logging.FileHandler] = None
        self.set_level(level)

    def configure(self, level: str = "INFO", log_file: Optional[str] = None):
        """按配置设置控制台级别，log_file不为空时同时写入文件"""
        self.set_level(level)
        if log_file:
            self.add_file_handler(log_file)

    def add_file_handler(self, log_file: str):
        """
        添加文件处理器

        文件中总是记录DEBUG及以上级别；重复调用时替换之前的文件处理器
        """
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        if self.file_handler is not None:
            self.logger.removeHandler(self.file_handler)
            self.file_handler.close()

        self.file_handler = logging.FileHandler(log_path, encoding='utf-8')
        self.file_handler.setLevel(logging.DEBUG)
        self.file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        self.logger.addHandler(self.file_handler)

    def set_level(self, level: str):
        """设置控制台日志级别"""
        value = getattr(logging, str(level).upper(), None)
        if not isinstance(value, int):
            self.logger.warning(f"未知的日志级别 '{level}'，使用INFO")
            value = logging.INFO
        self.console_handler.setLevel(value)

    def debug(self, message: str):
        self.logger.debug(message)

    def info(self, message: str):
        self.logger.info(message)

    def warning(self, message: str):
        self.logger.warning(message)

    def error(self, message: str):
        self.logger.error(message)


# 全局日志实例，文件输出由CLI根据配置开启
logger = Logger()
