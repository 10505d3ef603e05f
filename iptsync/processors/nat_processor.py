# -*- coding: utf-8 -*-
"""
NAT表处理器
主要功能：地址转换，DNAT/SNAT/MASQUERADE只能在本表中使用
"""

from typing import List
from iptsync.processors.base_processor import BaseTableProcessor
from iptsync.models.rule_models import Jump
from iptsync.infrastructure.logger import logger


class NatTableProcessor(BaseTableProcessor):
    """NAT表处理器"""

    def __init__(self):
        super().__init__("nat")
        logger.debug("NatTableProcessor 初始化完成")

    def _get_supported_chains(self) -> List[str]:
        """获取nat表支持的链"""
        return ["PREROUTING", "OUTPUT", "POSTROUTING"]

    def _get_supported_jumps(self) -> List[str]:
        """nat表支持全部跳转目标"""
        return [j.value for j in Jump]
