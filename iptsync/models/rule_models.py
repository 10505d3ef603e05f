# -*- coding: utf-8 -*-
"""
规则数据模型
定义声明规则、编译后规则、线上规则及收敛计划的数据结构
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Union

from iptsync.infrastructure.error_handler import ValidationError


# 线上规则中source/destination缺失时的取值，其它字段缺失时为空字符串
UNSET = None

RULE_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9 \-_]+$')


class TableType(Enum):
    """表类型枚举"""
    FILTER = "filter"
    NAT = "nat"
    MANGLE = "mangle"
    RAW = "raw"


class Chain(Enum):
    """内置链枚举"""
    PREROUTING = "PREROUTING"
    INPUT = "INPUT"
    FORWARD = "FORWARD"
    OUTPUT = "OUTPUT"
    POSTROUTING = "POSTROUTING"


class Protocol(Enum):
    """协议枚举"""
    TCP = "tcp"
    UDP = "udp"
    ICMP = "icmp"
    ESP = "esp"
    AH = "ah"
    VRRP = "vrrp"
    IGMP = "igmp"
    ALL = "all"


class Jump(Enum):
    """跳转目标枚举"""
    ACCEPT = "ACCEPT"
    DROP = "DROP"
    REJECT = "REJECT"
    DNAT = "DNAT"
    SNAT = "SNAT"
    LOG = "LOG"
    MASQUERADE = "MASQUERADE"
    REDIRECT = "REDIRECT"


# 表处理顺序，也是收敛时下发命令的顺序
TABLE_NAMES = [t.value for t in TableType]

PortValue = Union[str, int, List[Union[str, int]]]


def _enum_value(enum_cls, value: Any, field_name: str) -> str:
    text = str(value)
    for member in enum_cls:
        if member.value.lower() == text.lower():
            return member.value
    allowed = ", ".join(m.value for m in enum_cls)
    raise ValidationError(f"'{field_name}' 的取值 '{text}' 无效，可选值: {allowed}")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _text_or_list(value: Any) -> Union[str, List[str]]:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return str(value)


@dataclass
class RuleSpec:
    """声明的规则，字段含义与iptables参数一一对应"""
    name: str
    chain: str = "INPUT"
    table: str = "filter"
    proto: str = "tcp"
    jump: str = "ACCEPT"
    source: Union[str, List[str]] = ""
    destination: str = ""
    sport: PortValue = ""
    dport: PortValue = ""
    iniface: str = ""
    outiface: str = ""
    tosource: str = ""
    todest: str = ""
    toports: str = ""
    reject: str = ""
    log_level: str = ""
    log_prefix: str = ""
    icmp: str = ""
    state: Union[str, List[str]] = ""
    limit: str = ""
    burst: str = ""

    def __post_init__(self):
        self.name = _text(self.name)
        if not RULE_NAME_PATTERN.match(self.name):
            raise ValidationError(
                f"无效的规则名称 '{self.name}'，只允许ASCII字母数字、空格、连字符和下划线"
            )

        self.chain = _enum_value(Chain, self.chain, 'chain')
        self.table = _enum_value(TableType, self.table, 'table')
        self.proto = _enum_value(Protocol, self.proto, 'proto')
        self.jump = _enum_value(Jump, self.jump, 'jump')

        self.source = _text_or_list(self.source)
        self.sport = _text_or_list(self.sport)
        self.dport = _text_or_list(self.dport)
        self.state = _text_or_list(self.state)
        for attr in ('destination', 'iniface', 'outiface', 'tosource', 'todest',
                     'toports', 'reject', 'log_level', 'log_prefix', 'icmp',
                     'limit', 'burst'):
            setattr(self, attr, _text(getattr(self, attr)))

    @property
    def sources(self) -> List[str]:
        """声明的源地址列表，未声明时为空列表"""
        if isinstance(self.source, list):
            return [s for s in self.source if s != ""]
        return [self.source] if self.source else []

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], name: Optional[str] = None) -> 'RuleSpec':
        """从字典（例如YAML中的一项）创建RuleSpec"""
        values = dict(data)
        if name is not None:
            values.setdefault('name', name)
        if 'name' not in values:
            raise ValidationError("规则缺少 'name' 字段")

        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValidationError(f"规则 '{values['name']}' 包含未知字段: {', '.join(unknown)}")

        return cls(**values)


@dataclass(frozen=True)
class CompiledRule:
    """编译后的规则，构建后不可变"""
    name: str
    table: str
    chain: str
    priority: int
    canonical_text: str
    source: str = ""
    sequence_number: int = 0
    snapshot: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType({}), compare=False, hash=False
    )

    @property
    def numbered_key(self) -> str:
        """带序号的比较键，例如 '3 -A INPUT -j ACCEPT'"""
        return f"{self.sequence_number} {self.canonical_text}"


@dataclass
class LiveRule:
    """从iptables-save输出解析出的线上规则，每次解析都会重新生成"""
    key: str
    line: str
    table: str
    chain: str
    position: int = 0
    attributes: Dict[str, Optional[str]] = field(default_factory=dict)
    keep: bool = False


@dataclass
class ReconciliationPlan:
    """收敛计划"""
    to_add: List[CompiledRule] = field(default_factory=list)
    to_delete: List[LiveRule] = field(default_factory=list)
    changed: bool = False


@dataclass
class ConvergenceReport:
    """一次收敛运行的结果"""
    dry_run: bool = False
    pruned: int = 0
    changed: bool = False
    added: int = 0
    deleted: int = 0
    persisted: bool = False
    skipped: List[str] = field(default_factory=list)
    commands: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """转换为字典格式，便于JSON序列化"""
        return {
            'dry_run': self.dry_run,
            'pruned': self.pruned,
            'changed': self.changed,
            'added': self.added,
            'deleted': self.deleted,
            'persisted': self.persisted,
            'skipped': list(self.skipped),
            'commands': list(self.commands),
        }
