# -*- coding: utf-8 -*-
"""
IP地址处理工具
提供地址规范化功能，编译规则和解析线上规则时使用同一套规范形式
"""

import ipaddress
import re
import socket
from typing import Tuple

from iptsync.infrastructure.error_handler import FormatError

_MASK_BITS = re.compile(r'^(1*)(0*)$')


class IPUtils:
    """IP地址处理工具类"""

    @staticmethod
    def is_valid_ip(ip: str) -> bool:
        """验证IPv4地址格式"""
        try:
            ipaddress.IPv4Address(ip)
            return True
        except ValueError:
            return False

    @staticmethod
    def resolve_host(host: str) -> str:
        """把主机名解析为IPv4地址，字面地址原样标准化返回"""
        if IPUtils.is_valid_ip(host):
            return str(ipaddress.IPv4Address(host))
        try:
            return socket.gethostbyname(host)
        except (socket.gaierror, UnicodeError) as e:
            raise FormatError(f"无法解析主机名 '{host}': {e}") from e

    @staticmethod
    def prefix_length(mask: str) -> int:
        """
        计算掩码的前缀长度

        掩码可以是前缀长度（'24'）或点分形式（'255.255.255.0'），
        位模式必须是连续的1后接连续的0，否则抛出FormatError
        """
        if mask.isdigit():
            bits = int(mask)
            if bits > 32:
                raise FormatError(f"前缀长度超出范围: {mask}")
            return bits

        try:
            mask_value = int(ipaddress.IPv4Address(mask))
        except ValueError as e:
            raise FormatError(f"无效的掩码: {mask}") from e

        match = _MASK_BITS.match(format(mask_value, '032b'))
        if not match:
            raise FormatError(f"掩码位模式非法: {mask}")
        return len(match.group(1))

    @staticmethod
    def netmask(prefix: int) -> str:
        """前缀长度转换为点分掩码"""
        return str(ipaddress.IPv4Network(f"0.0.0.0/{prefix}").netmask)


class AddressNormalizer:
    """
    地址规范化器

    use_cidr为True时输出 'addr/prefixlen'，否则输出旧式的 'addr/netmask'；
    前缀长度为32时两种形式都省略掩码部分
    """

    def __init__(self, use_cidr: bool = True):
        self.use_cidr = use_cidr

    def parse(self, value: str) -> Tuple[str, int]:
        """解析地址，返回(网络地址, 前缀长度)"""
        text = value.strip()
        if not text:
            raise FormatError("地址为空")

        if '/' in text:
            host, mask = text.split('/', 1)
            prefix = IPUtils.prefix_length(mask)
        else:
            host, prefix = text, 32

        address = IPUtils.resolve_host(host)
        network = ipaddress.IPv4Network(f"{address}/{prefix}", strict=False)
        return str(network.network_address), prefix

    def render(self, address: str, prefix: int) -> str:
        """按当前能力标志输出地址"""
        if prefix == 32:
            return address
        if self.use_cidr:
            return f"{address}/{prefix}"
        return f"{address}/{IPUtils.netmask(prefix)}"

    def normalize(self, value: str) -> str:
        """把主机名、字面地址或网段转换为规范文本"""
        return self.render(*self.parse(value))
