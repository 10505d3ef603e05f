# -*- coding: utf-8 -*-
"""
规则编译服务
把声明的RuleSpec编译为一条或多条带规范文本的CompiledRule
每个声明的源地址生成一条规则，规则文本与iptables-save的输出形式保持一致
"""

import re
from types import MappingProxyType
from typing import Dict, List, Optional

from iptsync.models.rule_models import CompiledRule, Jump, Protocol, RuleSpec
from iptsync.processors import BaseTableProcessor, build_processors, chain_priority
from iptsync.utils.ip_utils import AddressNormalizer
from iptsync.utils.rule_syntax import (
    LIMIT_UNITS,
    MULTIPORT_MAX,
    RENDER_ORDER,
    STATE_ORDER,
    clause,
    icmp_name_to_number,
    quote,
)
from iptsync.infrastructure.logger import logger
from iptsync.infrastructure.error_handler import ValidationError


INIFACE_CHAINS = ["INPUT", "FORWARD", "PREROUTING"]
OUTIFACE_CHAINS = ["OUTPUT", "FORWARD", "POSTROUTING"]
PORT_PROTOCOLS = [Protocol.TCP.value, Protocol.UDP.value]
# 这些协议没有同名的匹配扩展
NO_MATCH_PROTOCOLS = [Protocol.VRRP.value, Protocol.IGMP.value]

DEFAULT_REJECT_WITH = "icmp-port-unreachable"
LOG_PREFIX_MAX = 27

# 只接受ASCII数字，iptables不认识其它Unicode数字
_DIGITS = re.compile(r'[0-9]+')


class RuleCompiler:
    """规则编译器"""

    def __init__(self, normalizer: Optional[AddressNormalizer] = None,
                 processors: Optional[Dict[str, BaseTableProcessor]] = None):
        """
        初始化编译器

        Args:
            normalizer: 地址规范化器，默认使用CIDR形式
            processors: 表处理器，None表示使用全部内置表
        """
        self.normalizer = normalizer or AddressNormalizer()
        self.processors = processors or build_processors()

    def compile(self, spec: RuleSpec) -> List[CompiledRule]:
        """
        编译一条声明规则

        Args:
            spec: 声明的规则

        Returns:
            CompiledRule列表，每个源地址一条；未声明源地址时只有一条

        Raises:
            ValidationError: 规则参数组合不合法
            FormatError: 地址格式错误或主机名无法解析
        """
        processor = self.processors[spec.table]
        processor.validate_chain(spec.chain)

        clauses: Dict[str, str] = {'chain': f"-A {spec.chain}"}
        values: Dict[str, str] = {
            'name': spec.name,
            'chain': spec.chain,
            'table': spec.table,
            'proto': spec.proto,
            'jump': spec.jump,
        }

        self._render_destination(spec, clauses, values)
        self._render_interfaces(spec, clauses, values)
        self._render_protocol(spec, clauses)
        self._render_ports(spec, clauses, values)
        self._render_icmp(spec, clauses, values)
        self._render_state(spec, clauses, values)
        if spec.name:
            clauses['name'] = clause("-m comment --comment", quote(spec.name))
        self._render_limit(spec, clauses, values)
        self._render_jump(spec, processor, clauses, values)

        sources = [self.normalizer.normalize(s) for s in spec.sources] or [""]
        priority = chain_priority(spec.chain)

        rules = []
        for source in sources:
            rule_clauses = dict(clauses)
            if source:
                rule_clauses['source'] = clause("-s", source)
            text = "".join(rule_clauses[k] for k in RENDER_ORDER if rule_clauses.get(k))
            logger.debug(f"iptables参数: {text}")

            snapshot = dict(values, source=source)
            rules.append(CompiledRule(
                name=spec.name,
                table=spec.table,
                chain=spec.chain,
                priority=priority,
                canonical_text=text,
                source=source,
                snapshot=MappingProxyType(snapshot),
            ))
        return rules

    def _render_destination(self, spec: RuleSpec, clauses: Dict[str, str], values: Dict[str, str]):
        values['destination'] = ""
        if spec.destination:
            destination = self.normalizer.normalize(spec.destination)
            clauses['destination'] = clause("-d", destination)
            values['destination'] = destination

    def _render_interfaces(self, spec: RuleSpec, clauses: Dict[str, str], values: Dict[str, str]):
        values['iniface'] = spec.iniface
        values['outiface'] = spec.outiface

        if spec.iniface:
            if spec.chain not in INIFACE_CHAINS:
                raise ValidationError("--in-interface 只能用于 INPUT/FORWARD/PREROUTING，忽略规则")
            clauses['iniface'] = clause("-i", spec.iniface)

        if spec.outiface:
            if spec.chain not in OUTIFACE_CHAINS:
                raise ValidationError("--out-interface 只能用于 OUTPUT/FORWARD/POSTROUTING，忽略规则")
            clauses['outiface'] = clause("-o", spec.outiface)

    def _render_protocol(self, spec: RuleSpec, clauses: Dict[str, str]):
        if spec.proto == Protocol.ALL.value:
            return
        text = clause("-p", spec.proto)
        if spec.proto not in NO_MATCH_PROTOCOLS:
            text += clause("-m", spec.proto)
        clauses['proto'] = text

    def _render_ports(self, spec: RuleSpec, clauses: Dict[str, str], values: Dict[str, str]):
        # 源端口在前，与iptables-save输出顺序一致
        for attr, flag, label in (('sport', '--sport', '--source-port'),
                                  ('dport', '--dport', '--destination-port')):
            value = getattr(spec, attr)
            values[attr] = ",".join(value) if isinstance(value, list) else value
            if not value:
                continue

            if spec.proto not in PORT_PROTOCOLS:
                raise ValidationError(f"{label} 只能用于 tcp/udp，忽略规则")

            if isinstance(value, list):
                if len(value) > MULTIPORT_MAX:
                    raise ValidationError(f"multiport模块最多只接受 {MULTIPORT_MAX} 个端口，忽略规则")
                clauses[attr] = clause(f"-m multiport {flag}s", ",".join(value))
            else:
                clauses[attr] = clause(flag, value)

    def _render_icmp(self, spec: RuleSpec, clauses: Dict[str, str], values: Dict[str, str]):
        values['icmp'] = ""
        if spec.proto != Protocol.ICMP.value:
            return

        if spec.icmp == "":
            icmp = "any"
        else:
            # iptables-save 以数字保存icmp类型，符号名不转换会导致每次比较都不一致
            icmp = icmp_name_to_number(spec.icmp)
            if icmp is None:
                raise ValidationError(f"'icmp' 的取值 '{spec.icmp}' 无效或未知，忽略规则")

        clauses['icmp'] = clause("--icmp-type", icmp)
        values['icmp'] = icmp

    def _render_state(self, spec: RuleSpec, clauses: Dict[str, str], values: Dict[str, str]):
        values['state'] = ""
        if not spec.state:
            return

        raw = spec.state if isinstance(spec.state, list) else spec.state.split(",")
        states = [s.strip().upper() for s in raw if s.strip()]
        invalid = [s for s in states if s not in STATE_ORDER]
        if invalid or len(states) > len(STATE_ORDER):
            raise ValidationError(
                f"'state' 只接受以下状态: {', '.join(STATE_ORDER)}，忽略规则"
            )

        ordered = ",".join(s for s in STATE_ORDER if s in states)
        clauses['state'] = clause("-m state --state", ordered)
        values['state'] = ordered

    def _render_limit(self, spec: RuleSpec, clauses: Dict[str, str], values: Dict[str, str]):
        values['limit'] = spec.limit
        values['burst'] = spec.burst

        if spec.limit:
            if "/" not in spec.limit:
                raise ValidationError("'limit' 需要带单位后缀 (sec/min/hour/day)，忽略规则")
            count, unit = spec.limit.split("/", 1)
            if not _DIGITS.fullmatch(count):
                raise ValidationError("'limit' 的取值必须是数字，忽略规则")
            if unit not in LIMIT_UNITS:
                raise ValidationError("'limit' 只能使用 sec/min/hour/day 后缀，忽略规则")
            clauses['limit'] = clause("-m limit --limit", spec.limit)

        if spec.burst:
            if not spec.limit:
                raise ValidationError("'burst' 必须和 'limit' 一起使用，忽略规则")
            if not _DIGITS.fullmatch(spec.burst):
                raise ValidationError("'burst' 只接受非负整数，忽略规则")
            clauses['burst'] = clause("--limit-burst", spec.burst)

    def _render_jump(self, spec: RuleSpec, processor: BaseTableProcessor,
                     clauses: Dict[str, str], values: Dict[str, str]):
        processor.validate_jump(spec.jump)
        clauses['jump'] = clause("-j", spec.jump)

        values.update(todest="", tosource="", toports="", reject="",
                      log_level="", log_prefix="")

        if spec.jump == Jump.DNAT.value:
            if not spec.todest:
                raise ValidationError("DNAT 缺少必需参数 'todest'，忽略规则")
            clauses['todest'] = clause("--to-destination", spec.todest)
            values['todest'] = spec.todest

        elif spec.jump == Jump.SNAT.value:
            if not spec.tosource:
                raise ValidationError("SNAT 缺少必需参数 'tosource'，忽略规则")
            clauses['tosource'] = clause("--to-source", spec.tosource)
            values['tosource'] = spec.tosource

        elif spec.jump == Jump.REDIRECT.value:
            if not spec.toports:
                raise ValidationError("REDIRECT 缺少必需参数 'toports'，忽略规则")
            clauses['toports'] = clause("--to-ports", spec.toports)
            values['toports'] = spec.toports

        elif spec.jump == Jump.REJECT.value:
            reject = spec.reject or DEFAULT_REJECT_WITH
            clauses['reject'] = clause("--reject-with", reject)
            values['reject'] = reject

        elif spec.jump == Jump.LOG.value:
            if spec.log_level:
                clauses['log_level'] = clause("--log-level", spec.log_level)
                values['log_level'] = spec.log_level
            if spec.log_prefix:
                # --log-prefix 最长29个字符，截断后再加上 ": "
                prefix = spec.log_prefix[:LOG_PREFIX_MAX] + ": "
                clauses['log_prefix'] = clause("--log-prefix", quote(prefix))
                values['log_prefix'] = prefix
