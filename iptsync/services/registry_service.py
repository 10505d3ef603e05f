# -*- coding: utf-8 -*-
"""
规则登记服务
按表收集编译后的规则，排序后拼接pre/post文件中的静态规则，并分配序号
"""

from dataclasses import replace
from types import MappingProxyType
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from iptsync.models.rule_models import CompiledRule, TABLE_NAMES
from iptsync.processors import BaseTableProcessor, build_processors, chain_priority
from iptsync.utils.rule_syntax import iter_flags, tokenize
from iptsync.infrastructure.logger import logger


# (表名, 规则文本)
StaticEntry = Tuple[str, str]


class TableRegistry:
    """按表登记规则"""

    def __init__(self, processors: Optional[Dict[str, BaseTableProcessor]] = None):
        self.processors = processors or build_processors()
        self._rules: Dict[str, List[CompiledRule]] = {table: [] for table in TABLE_NAMES}

    def add(self, rules: Iterable[CompiledRule]):
        """登记编译后的规则"""
        for rule in rules:
            self._rules[rule.table].append(rule)

    def __len__(self) -> int:
        return sum(len(rules) for rules in self._rules.values())

    def build(self, pre: Sequence[StaticEntry] = (),
              post: Sequence[StaticEntry] = ()) -> Dict[str, List[CompiledRule]]:
        """
        生成最终的规则集

        Args:
            pre: pre文件中的静态规则，按文件顺序插入到对应表的最前面
            post: post文件中的静态规则，按文件顺序追加到对应表的最后面

        Returns:
            表名 -> 按最终顺序排列并编号（从1开始）的规则列表
        """
        result: Dict[str, List[CompiledRule]] = {}

        for table in TABLE_NAMES:
            ordered = self.processors[table].order_rules(self._rules[table])
            head = [self.static_rule(t, text) for t, text in pre if t == table]
            tail = [self.static_rule(t, text) for t, text in post if t == table]
            rules = head + ordered + tail

            result[table] = [
                replace(rule, sequence_number=index)
                for index, rule in enumerate(rules, start=1)
            ]
            if rules:
                logger.debug(f"表 {table}: {len(head)} 条pre规则, {len(ordered)} 条声明规则, {len(tail)} 条post规则")

        for table, _ in list(pre) + list(post):
            if table not in result:
                logger.warning(f"静态规则引用了未知的表 '{table}'，已忽略")

        return result

    @staticmethod
    def static_rule(table: str, text: str) -> CompiledRule:
        """把pre/post文件中的一行包装为CompiledRule，内容原样保留"""
        chain = ""
        for flag, value in iter_flags(tokenize(text)):
            if flag in ('-A', '--append') and value:
                chain = value
                break

        return CompiledRule(
            name="",
            table=table,
            chain=chain,
            priority=chain_priority(chain),
            canonical_text=text,
            snapshot=MappingProxyType({'table': table, 'chain': chain}),
        )
