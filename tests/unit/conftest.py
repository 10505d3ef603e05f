# -*- coding: utf-8 -*-
"""
测试公共夹具
FakeIptables在内存中模拟iptables/iptables-save，只替换外部进程调用
"""

import pytest

from iptsync.data_access.iptables_adapter import IptablesAdapter
from iptsync.infrastructure.error_handler import ExecutionError
from iptsync.models.rule_models import RuleSpec, TABLE_NAMES
from iptsync.processors import chain_priority


QUOTED_FLAGS = ('--comment', '--log-prefix')


class FakeIptables(IptablesAdapter):
    """内存中的iptables"""

    def __init__(self, dry_run: bool = False, persist_cmd: str = "true"):
        super().__init__(iptables_cmd="iptables", save_cmd="iptables-save",
                         persist_cmd=persist_cmd, dry_run=dry_run)
        # 表名 -> 链名 -> 规则文本列表
        self.tables = {table: {} for table in TABLE_NAMES}
        self.calls = []
        self.fail_on = None

    @staticmethod
    def render(tokens):
        parts = []
        for i, token in enumerate(tokens):
            if (i > 0 and tokens[i - 1] in QUOTED_FLAGS) or ' ' in token:
                parts.append(f'"{token}"')
            else:
                parts.append(token)
        return " ".join(parts)

    def load(self, table, lines):
        """直接写入线上规则"""
        for line in lines:
            chain = line.split()[1]
            self.tables[table].setdefault(chain, []).append(line)

    def rules(self, table):
        """按iptables-save顺序返回某张表的规则"""
        chains = sorted(self.tables[table], key=chain_priority)
        return [line for chain in chains for line in self.tables[table][chain]]

    def save_output(self):
        lines = ["# Generated by iptables-save v1.8.7"]
        for table in TABLE_NAMES:
            lines.append(f"*{table}")
            lines.append(":INPUT ACCEPT [0:0]")
            # 模拟真实输出中的行尾空格
            lines.extend(line + " " for line in self.rules(table))
            lines.append("COMMIT")
        return "\n".join(lines) + "\n"

    @property
    def mutating_calls(self):
        return [cmd for cmd in self.calls if cmd[0] != self.save_cmd]

    def _execute(self, cmd):
        self.calls.append(list(cmd))
        if self.fail_on and self.fail_on in cmd:
            raise ExecutionError(f"模拟失败: {' '.join(cmd)}", command=cmd, returncode=1)

        if cmd[0] == self.save_cmd:
            return self.save_output()
        if cmd == ["true"]:
            return ""

        table, op, chain, rest = cmd[2], cmd[3], cmd[4], cmd[5:]
        chain_rules = self.tables[table].setdefault(chain, [])
        if op == '-A':
            chain_rules.append(self.render(['-A', chain] + rest))
            return ""

        if len(rest) == 1 and rest[0].isdigit():
            index = int(rest[0]) - 1
            if index >= len(chain_rules):
                raise ExecutionError("Index of deletion too big", command=cmd, returncode=1)
            del chain_rules[index]
            return ""

        text = self.render(['-A', chain] + rest)
        if text not in chain_rules:
            raise ExecutionError("Bad rule (does a matching rule exist in that chain?)",
                                 command=cmd, returncode=1)
        chain_rules.remove(text)
        return ""


@pytest.fixture
def fake_iptables():
    return FakeIptables()


@pytest.fixture
def ssh_spec():
    return RuleSpec(name="ssh", chain="INPUT", table="filter", proto="tcp", dport=22, jump="ACCEPT")


SSH_RULE = '-A INPUT -p tcp -m tcp --dport 22 -m comment --comment "ssh" -j ACCEPT'
