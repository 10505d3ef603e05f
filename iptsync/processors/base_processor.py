# -*- coding: utf-8 -*-
"""
基础表处理器
定义所有表处理器的通用接口：允许的链、允许的跳转目标以及规则排序
"""

from abc import ABC, abstractmethod
from typing import Iterable, List

from iptsync.models.rule_models import Chain, CompiledRule, Jump, TableType
from iptsync.infrastructure.error_handler import ValidationError
from iptsync.infrastructure.logger import logger


# 各链在iptables-save输出中出现的顺序，用于让声明规则与输出顺序一致
CHAIN_PRIORITY = {
    Chain.PREROUTING.value: 1,
    Chain.INPUT.value: 2,
    Chain.FORWARD.value: 3,
    Chain.OUTPUT.value: 4,
    Chain.POSTROUTING.value: 5,
}

# 只能出现在nat表中的跳转目标
NAT_ONLY_JUMPS = [Jump.DNAT.value, Jump.SNAT.value, Jump.MASQUERADE.value]


def chain_priority(chain: str) -> int:
    """链优先级，自定义链排在所有内置链之后"""
    return CHAIN_PRIORITY.get(chain, len(CHAIN_PRIORITY) + 1)


class BaseTableProcessor(ABC):
    """基础表处理器抽象类"""

    def __init__(self, table_name: str):
        """
        初始化表处理器

        Args:
            table_name: 表名
        """
        self.table_name = table_name
        self.table_type = TableType(table_name)
        self.supported_chains = self._get_supported_chains()
        self.supported_jumps = self._get_supported_jumps()

        logger.debug(f"{self.__class__.__name__} 初始化完成，表: {table_name}")

    @abstractmethod
    def _get_supported_chains(self) -> List[str]:
        """获取支持的链列表"""
        pass

    def _get_supported_jumps(self) -> List[str]:
        """获取支持的跳转目标，默认不含nat专用目标"""
        return [j.value for j in Jump if j.value not in NAT_ONLY_JUMPS]

    @property
    def forbidden_chains(self) -> List[str]:
        """本表禁止使用的内置链"""
        return [c.value for c in Chain if c.value not in self.supported_chains]

    def validate_chain(self, chain: str):
        """校验链是否可用于本表"""
        if chain not in self.supported_chains:
            raise ValidationError(
                f"{'/'.join(self.forbidden_chains)} 不能用于 '{self.table_name}' 表，忽略规则"
            )

    def validate_jump(self, jump: str):
        """校验跳转目标是否可用于本表"""
        if jump not in self.supported_jumps:
            raise ValidationError(f"{jump} 只能用于 'nat' 表，忽略规则")

    def order_rules(self, rules: Iterable[CompiledRule]) -> List[CompiledRule]:
        """
        对本表规则做稳定排序

        排序键为(链优先级, 规则名, 源地址)，保证最终顺序与声明顺序无关
        """
        return sorted(rules, key=lambda r: (r.priority, r.name, r.source))

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(table={self.table_name}, chains={self.supported_chains})"
