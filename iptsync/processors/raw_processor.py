# -*- coding: utf-8 -*-
"""
Raw表处理器
主要功能：连接跟踪豁免，只有PREROUTING和OUTPUT两条内置链
"""

from typing import List
from iptsync.processors.base_processor import BaseTableProcessor
from iptsync.infrastructure.logger import logger


class RawTableProcessor(BaseTableProcessor):
    """Raw表处理器"""

    def __init__(self):
        super().__init__("raw")
        logger.debug("RawTableProcessor 初始化完成")

    def _get_supported_chains(self) -> List[str]:
        """获取raw表支持的链"""
        return ["PREROUTING", "OUTPUT"]

