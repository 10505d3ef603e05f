# -*- coding: utf-8 -*-
"""
Filter表处理器
主要功能：数据包过滤、访问控制，不允许PREROUTING/POSTROUTING
"""

from typing import List
from iptsync.processors.base_processor import BaseTableProcessor
from iptsync.infrastructure.logger import logger


class FilterTableProcessor(BaseTableProcessor):
    """Filter表处理器"""

    def __init__(self):
        super().__init__("filter")
        logger.debug("FilterTableProcessor 初始化完成")

    def _get_supported_chains(self) -> List[str]:
        """获取filter表支持的链"""
        return ["INPUT", "FORWARD", "OUTPUT"]

