# -*- coding: utf-8 -*-
"""
iptables命令适配器
封装对iptables/iptables-save等外部命令的调用：读取线上规则、添加/删除规则、
持久化规则以及一次性的版本能力探测，支持dry-run
"""

import platform
import re
import shlex
import subprocess
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from iptsync.utils.rule_syntax import tokenize
from iptsync.infrastructure.logger import logger
from iptsync.infrastructure.error_handler import (
    ExecutionError,
    PersistenceUnavailable,
    handle_execution_error,
)


@dataclass
class PersistMethod:
    """持久化方式，output_file不为空时把命令输出写入该文件"""
    command: List[str]
    output_file: Optional[str] = None

    def describe(self) -> str:
        text = shlex.join(self.command)
        if self.output_file:
            text += f" > {self.output_file}"
        return text


def supports_cidr(version: str) -> bool:
    """根据iptables版本号判断是否支持CIDR形式，1.3.x及更早版本使用点分掩码"""
    parts = [int(p) for p in version.split('.') if p.isdigit()] + [0, 0]
    major, minor = parts[0], parts[1]
    return not (major < 2 and minor < 4)


@lru_cache(maxsize=None)
def probe_cidr_support(iptables_cmd: str) -> bool:
    """
    探测iptables是否支持CIDR地址形式

    每个进程对同一个命令只探测一次，探测失败时默认支持CIDR
    """
    try:
        result = subprocess.run([iptables_cmd, '--version'], capture_output=True, text=True)
    except OSError as e:
        logger.warning(f"iptables版本探测失败，默认使用CIDR形式: {e}")
        return True

    # 例如: "iptables v1.8.7 (nf_tables)"
    match = re.search(r' v([0-9.]+)', result.stdout)
    if result.returncode != 0 or not match:
        logger.warning(f"无法识别iptables版本，默认使用CIDR形式: {result.stdout.strip()}")
        return True

    use_cidr = supports_cidr(match.group(1))
    logger.debug(f"iptables版本 {match.group(1)}，CIDR支持: {use_cidr}")
    return use_cidr


def read_os_release() -> Dict[str, str]:
    """读取/etc/os-release，失败时返回空字典"""
    try:
        return platform.freedesktop_os_release()
    except OSError:
        return {}


def resolve_persist_method(save_cmd: str, configured: Optional[str] = None,
                           os_release: Optional[Dict[str, str]] = None) -> PersistMethod:
    """
    确定规则持久化方式

    Args:
        save_cmd: iptables-save命令路径
        configured: 配置中指定的持久化命令，优先使用
        os_release: 操作系统标识，None表示从系统读取

    Raises:
        PersistenceUnavailable: 不认识当前操作系统
    """
    if configured:
        return PersistMethod(shlex.split(configured))

    release = read_os_release() if os_release is None else os_release
    ids = [release.get('ID', '')] + release.get('ID_LIKE', '').split()

    methods = {
        'rhel': PersistMethod(['service', 'iptables', 'save']),
        'centos': PersistMethod(['service', 'iptables', 'save']),
        'fedora': PersistMethod(['service', 'iptables', 'save']),
        'debian': PersistMethod([save_cmd], '/etc/iptables/rules.v4'),
        'ubuntu': PersistMethod([save_cmd], '/etc/iptables/rules.v4'),
        'arch': PersistMethod([save_cmd], '/etc/iptables/iptables.rules'),
    }
    for os_id in ids:
        if os_id in methods:
            return methods[os_id]

    raise PersistenceUnavailable(f"不知道如何在当前系统上保存规则 (ID={release.get('ID', 'unknown')})")


class IptablesAdapter:
    """iptables命令适配器"""

    def __init__(self, iptables_cmd: str = "/sbin/iptables",
                 save_cmd: str = "/sbin/iptables-save",
                 persist_cmd: Optional[str] = None,
                 dry_run: bool = False):
        """
        初始化适配器

        Args:
            iptables_cmd: iptables命令路径
            save_cmd: iptables-save命令路径
            persist_cmd: 持久化命令，None表示根据操作系统自动选择
            dry_run: 为True时只记录变更命令，不实际执行
        """
        self.iptables_cmd = iptables_cmd
        self.save_cmd = save_cmd
        self.persist_cmd = persist_cmd
        self.dry_run = dry_run

    @classmethod
    def from_config(cls, config, dry_run: Optional[bool] = None) -> 'IptablesAdapter':
        """从Config对象创建适配器"""
        return cls(
            iptables_cmd=config.get('iptables.iptables_cmd', '/sbin/iptables'),
            save_cmd=config.get('iptables.save_cmd', '/sbin/iptables-save'),
            persist_cmd=config.get('persist.command'),
            dry_run=config.get('convergence.dry_run', False) if dry_run is None else dry_run,
        )

    @handle_execution_error
    def _execute(self, cmd: List[str]) -> str:
        """执行外部命令，返回标准输出；非零退出码抛出ExecutionError"""
        logger.debug(f"执行命令: {' '.join(cmd)}")
        result = subprocess.run(cmd, capture_output=True, text=True)
        if result.returncode != 0:
            raise ExecutionError(
                f"命令执行失败 (退出码 {result.returncode}): {' '.join(cmd)}: {result.stderr.strip()}",
                command=cmd,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result.stdout

    def _mutate(self, action: str, cmd: List[str], output_file: Optional[str] = None) -> str:
        """执行变更类命令，返回命令文本；dry-run时只记录"""
        text = shlex.join(cmd) + (f" > {output_file}" if output_file else "")
        if self.dry_run:
            logger.info(f"Would have run [{action}]: {text} (dry-run)")
            return text

        logger.debug(f"Running [{action}]: {text}")
        output = self._execute(cmd)
        if output_file:
            self._write_output(cmd, output_file, output)
        return text

    @staticmethod
    def _write_output(cmd: List[str], output_file: str, output: str):
        """把命令输出写入文件，写入失败抛出ExecutionError"""
        path = Path(output_file)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(output, encoding='utf-8')
        except OSError as e:
            logger.error(f"写入 {path} 失败: {e}")
            raise ExecutionError(f"无法写入 {path}: {e}", command=cmd) from e

    def list_rules(self) -> str:
        """获取iptables-save的完整输出"""
        return self._execute([self.save_cmd])

    def append_rule(self, table: str, rule_text: str) -> str:
        """添加规则，rule_text形如 '-A INPUT ...'"""
        cmd = [self.iptables_cmd, '-t', table] + tokenize(rule_text)
        return self._mutate('create', cmd)

    def delete_rule(self, table: str, rule_text: str) -> str:
        """按规则内容删除规则，把规则文本中的 -A 替换为 -D"""
        tokens = tokenize(rule_text)
        if tokens and tokens[0] in ('-A', '--append'):
            tokens[0] = '-D'
        cmd = [self.iptables_cmd, '-t', table] + tokens
        return self._mutate('delete', cmd)

    def delete_position(self, table: str, chain: str, position: int = 1) -> str:
        """按位置删除链中的规则"""
        cmd = [self.iptables_cmd, '-t', table, '-D', chain, str(position)]
        return self._mutate('delete', cmd)

    def persist(self) -> str:
        """
        持久化当前规则

        Raises:
            PersistenceUnavailable: 没有已知的持久化方式
        """
        method = resolve_persist_method(self.save_cmd, self.persist_cmd)
        return self._mutate('save', method.command, method.output_file)

    def probe_cidr_support(self) -> bool:
        """一次性探测CIDR支持，结果在进程内缓存"""
        return probe_cidr_support(self.iptables_cmd)

    def __str__(self) -> str:
        """字符串表示"""
        return f"IptablesAdapter(iptables={self.iptables_cmd}, dry_run={self.dry_run})"
