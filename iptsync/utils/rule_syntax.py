# -*- coding: utf-8 -*-
"""
规则文本语法
iptables规则是空格分隔的 '参数 值' 序列，编译器按这里的参数名和顺序输出，
解析器按同一张表把参数映射回属性名，保证输出与解析对称
"""

import re
import shlex
from typing import Dict, Iterator, List, Optional, Tuple

from iptsync.infrastructure.logger import logger


# 参数 -> 属性名
FLAG_ATTRIBUTES: Dict[str, str] = {
    '-A': 'chain',
    '--append': 'chain',
    '-t': 'table',
    '--table': 'table',
    '-s': 'source',
    '--source': 'source',
    '--src': 'source',
    '-d': 'destination',
    '--destination': 'destination',
    '--dst': 'destination',
    '-i': 'iniface',
    '--in-interface': 'iniface',
    '-o': 'outiface',
    '--out-interface': 'outiface',
    '-p': 'proto',
    '--protocol': 'proto',
    '--sport': 'sport',
    '--source-port': 'sport',
    '--sports': 'sport',
    '--source-ports': 'sport',
    '--dport': 'dport',
    '--destination-port': 'dport',
    '--dports': 'dport',
    '--destination-ports': 'dport',
    '--icmp-type': 'icmp',
    '--state': 'state',
    '--comment': 'name',
    '--limit': 'limit',
    '--limit-burst': 'burst',
    '-j': 'jump',
    '--jump': 'jump',
    '--to-destination': 'todest',
    '--to-source': 'tosource',
    '--to-ports': 'toports',
    '--reject-with': 'reject',
    '--log-level': 'log_level',
    '--log-prefix': 'log_prefix',
}

# 除属性参数外，-m 也总是带一个值（模块名）
VALUE_FLAGS = set(FLAG_ATTRIBUTES) | {'-m', '--match', '-D', '--delete'}

# 编译输出时各子句的顺序
RENDER_ORDER: List[str] = [
    'chain', 'source', 'destination', 'iniface', 'outiface', 'proto',
    'sport', 'dport', 'icmp', 'state', 'name', 'limit', 'burst', 'jump',
    'todest', 'tosource', 'toports', 'reject', 'log_level', 'log_prefix',
]

# 线上规则属性集合，与编译器输出的属性一致
LIVE_ATTRIBUTES: List[str] = [
    'chain', 'table', 'proto', 'jump', 'source', 'destination', 'sport',
    'dport', 'iniface', 'outiface', 'todest', 'tosource', 'toports', 'reject',
    'log_level', 'log_prefix', 'icmp', 'state', 'limit', 'burst', 'name',
]

STATE_ORDER: List[str] = ['INVALID', 'NEW', 'RELATED', 'ESTABLISHED']

LIMIT_UNITS = ('sec', 'min', 'hour', 'day')

MULTIPORT_MAX = 15

# iptables-save 以数字形式保存icmp类型，声明中的符号名需要先转换
ICMP_TYPES: Dict[str, str] = {
    'any': 'any',
    'echo-reply': '0',
    'pong': '0',
    'destination-unreachable': '3',
    'network-unreachable': '3/0',
    'host-unreachable': '3/1',
    'protocol-unreachable': '3/2',
    'port-unreachable': '3/3',
    'fragmentation-needed': '3/4',
    'source-route-failed': '3/5',
    'network-unknown': '3/6',
    'host-unknown': '3/7',
    'network-prohibited': '3/9',
    'host-prohibited': '3/10',
    'TOS-network-unreachable': '3/11',
    'TOS-host-unreachable': '3/12',
    'communication-prohibited': '3/13',
    'host-precedence-violation': '3/14',
    'precedence-cutoff': '3/15',
    'source-quench': '4',
    'redirect': '5',
    'network-redirect': '5/0',
    'host-redirect': '5/1',
    'TOS-network-redirect': '5/2',
    'TOS-host-redirect': '5/3',
    'echo-request': '8',
    'ping': '8',
    'router-advertisement': '9',
    'router-solicitation': '10',
    'time-exceeded': '11',
    'ttl-exceeded': '11',
    'ttl-zero-during-transit': '11/0',
    'ttl-zero-during-reassembly': '11/1',
    'parameter-problem': '12',
    'ip-header-bad': '12/0',
    'required-option-missing': '12/1',
    'timestamp-request': '13',
    'timestamp-reply': '14',
    'address-mask-request': '17',
    'address-mask-reply': '18',
}

_NUMERIC_ICMP = re.compile(r'^[0-9]+(/[0-9]+)?$')


def icmp_name_to_number(name: str) -> Optional[str]:
    """符号名转换为数字类型码，数字形式原样返回，未知名称返回None"""
    if _NUMERIC_ICMP.match(name):
        return name
    return ICMP_TYPES.get(name)


def quote(value: str) -> str:
    """带空格的值（注释、日志前缀）用双引号包裹"""
    return f'"{value}"'


def clause(flag: str, value: str) -> str:
    return f" {flag} {value}"


def tokenize(line: str) -> List[str]:
    """
    把规则文本切分为token

    引号不配对时退化为按空白切分，保证单行错误不影响整体解析
    """
    try:
        return shlex.split(line)
    except ValueError as e:
        logger.warning(f"规则文本引号不配对，按空白切分: {line} ({e})")
        return line.split()


def iter_flags(tokens: List[str]) -> Iterator[Tuple[str, Optional[str]]]:
    """按 (参数, 值) 迭代token，'!' 取反标记被跳过"""
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if token == '!':
            i += 1
            continue
        if not token.startswith('-'):
            # 孤立的值，无法归属到任何参数
            yield '', token
            i += 1
            continue

        has_next = i + 1 < len(tokens)
        if has_next and (token in VALUE_FLAGS or not tokens[i + 1].startswith('-')):
            yield token, tokens[i + 1]
            i += 2
        else:
            yield token, None
            i += 1


def strip_table_selector(line: str) -> Tuple[Optional[str], str]:
    """去掉规则文本中的 '-t <table>' 选择器，返回(表名, 剩余文本)"""
    match = re.search(r'(^|\s)-t\s+(\S+)', line)
    if not match:
        return None, line.strip()
    remainder = line[:match.start()] + line[match.end():]
    return match.group(2), remainder.strip()
