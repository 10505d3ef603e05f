# -*- coding: utf-8 -*-
"""
异常处理模块
定义自定义异常类和错误处理装饰器
"""

from functools import wraps
from typing import Callable, List, Optional
from .logger import logger


class IptsyncError(Exception):
    """工具基础异常类"""
    pass


class ValidationError(IptsyncError):
    """规则声明校验错误，对应规则会被跳过"""
    pass


class FormatError(IptsyncError):
    """格式错误（掩码位模式非法、主机名无法解析等）"""
    pass


class ExecutionError(IptsyncError):
    """外部命令执行失败"""

    def __init__(self, message: str, command: Optional[List[str]] = None,
                 returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr


class PersistenceUnavailable(IptsyncError):
    """当前系统没有已知的规则持久化方式"""
    pass


class ConfigError(IptsyncError):
    """配置错误"""
    pass


def handle_execution_error(func: Callable) -> Callable:
    """命令执行错误装饰器，把进程启动失败转换为ExecutionError"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ExecutionError:
            raise
        except OSError as e:
            logger.error(f"命令执行失败: {e}")
            raise ExecutionError(f"命令执行失败: {e}") from e
    return wrapper


def handle_config_error(func: Callable) -> Callable:
    """配置错误装饰器"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ConfigError:
            raise
        except Exception as e:
            logger.error(f"配置错误: {e}")
            raise ConfigError(f"配置处理失败: {e}") from e
    return wrapper
