# -*- coding: utf-8 -*-
"""
线上规则解析服务
解析iptables-save的文本输出，得到按表分组、以规则文本为键的线上规则
地址使用与编译器相同的规范化方式，保证等价地址逐字节相同
"""

from typing import Dict, Optional

from iptsync.models.rule_models import LiveRule, TABLE_NAMES, UNSET
from iptsync.utils.ip_utils import AddressNormalizer
from iptsync.utils.rule_syntax import FLAG_ATTRIBUTES, LIVE_ATTRIBUTES, iter_flags, tokenize
from iptsync.infrastructure.logger import logger
from iptsync.infrastructure.error_handler import FormatError


DEFAULT_TABLE = "filter"

# 线上规则表: 表名 -> 键 -> LiveRule
LiveState = Dict[str, Dict[str, LiveRule]]


class LiveStateParser:
    """iptables-save输出解析器"""

    def __init__(self, normalizer: Optional[AddressNormalizer] = None):
        self.normalizer = normalizer or AddressNormalizer()

    def parse(self, raw: str, numbered: bool = False) -> LiveState:
        """
        解析iptables-save输出

        Args:
            raw: iptables-save的完整输出
            numbered: 为True时键为 '<表内序号> <规则文本>'，序号在每个表头处重置

        Returns:
            表名 -> {键: LiveRule}，所有已知表都会出现（可能为空）
        """
        state: LiveState = {table: {} for table in TABLE_NAMES}
        table = DEFAULT_TABLE
        position = 0

        for raw_line in raw.splitlines():
            line = raw_line.strip()
            if not line or line.startswith('#'):
                continue

            if line.startswith('*'):
                table = line[1:].split()[0] if line[1:].strip() else DEFAULT_TABLE
                state.setdefault(table, {})
                position = 0
                continue

            if line.startswith(':') or line == 'COMMIT':
                # 默认链定义和提交标记不参与比较
                continue

            if not line.startswith('-A'):
                logger.debug(f"忽略无法识别的行: {line}")
                continue

            position += 1
            attributes = self.parse_rule(line, table)
            key = f"{position} {line}" if numbered else line
            state[table][key] = LiveRule(
                key=key,
                line=line,
                table=table,
                chain=attributes['chain'] or "",
                position=position if numbered else 0,
                attributes=attributes,
            )

        logger.debug(
            "线上规则解析完成: " + ", ".join(f"{t}={len(rules)}" for t, rules in state.items())
        )
        return state

    def parse_rule(self, line: str, table: str = DEFAULT_TABLE) -> Dict[str, Optional[str]]:
        """
        解析单条规则文本为属性表

        缺失字段为空字符串，source/destination缺失时为UNSET；
        单个字段解析失败只记录警告，不影响其它字段
        """
        attributes: Dict[str, Optional[str]] = {name: "" for name in LIVE_ATTRIBUTES}
        attributes['source'] = UNSET
        attributes['destination'] = UNSET
        attributes['table'] = table or DEFAULT_TABLE
        attributes['proto'] = "all"

        for flag, value in iter_flags(tokenize(line)):
            attr = FLAG_ATTRIBUTES.get(flag)
            if attr is None or value is None:
                continue

            if attr in ('source', 'destination'):
                try:
                    value = self.normalizer.normalize(value)
                except FormatError as e:
                    logger.warning(f"地址字段解析失败，保留原文 '{value}': {e}")

            attributes[attr] = value

        return attributes
