# -*- coding: utf-8 -*-
"""
Mangle表处理器
主要功能：数据包修改，五条内置链全部可用
"""

from typing import List
from iptsync.processors.base_processor import BaseTableProcessor
from iptsync.infrastructure.logger import logger


class MangleTableProcessor(BaseTableProcessor):
    """Mangle表处理器"""

    def __init__(self):
        super().__init__("mangle")
        logger.debug("MangleTableProcessor 初始化完成")

    def _get_supported_chains(self) -> List[str]:
        """获取mangle表支持的链"""
        return ["PREROUTING", "INPUT", "FORWARD", "OUTPUT", "POSTROUTING"]

