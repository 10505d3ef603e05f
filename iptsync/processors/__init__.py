# -*- coding: utf-8 -*-
"""
表处理器
每个表处理器描述一张iptables表允许的链和跳转目标，并负责表内规则排序
"""

from typing import Dict

from .base_processor import BaseTableProcessor, CHAIN_PRIORITY, NAT_ONLY_JUMPS, chain_priority
from .filter_processor import FilterTableProcessor
from .nat_processor import NatTableProcessor
from .mangle_processor import MangleTableProcessor
from .raw_processor import RawTableProcessor


def build_processors() -> Dict[str, BaseTableProcessor]:
    """按表名创建全部表处理器"""
    return {
        'filter': FilterTableProcessor(),
        'nat': NatTableProcessor(),
        'mangle': MangleTableProcessor(),
        'raw': RawTableProcessor(),
    }


__all__ = [
    'BaseTableProcessor',
    'CHAIN_PRIORITY',
    'NAT_ONLY_JUMPS',
    'chain_priority',
    'build_processors',
    'FilterTableProcessor',
    'NatTableProcessor',
    'MangleTableProcessor',
    'RawTableProcessor',
]
