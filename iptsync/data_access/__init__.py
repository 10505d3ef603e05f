# -*- coding: utf-8 -*-
"""
数据访问层
提供对iptables命令和规则文件的访问接口
"""

from .iptables_adapter import IptablesAdapter, PersistMethod, probe_cidr_support, resolve_persist_method
from .rule_file_dao import RuleFileDAO

__all__ = [
    'IptablesAdapter',
    'PersistMethod',
    'probe_cidr_support',
    'resolve_persist_method',
    'RuleFileDAO',
]
