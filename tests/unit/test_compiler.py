# -*- coding: utf-8 -*-
"""
规则编译器测试
"""

import pytest

from iptsync.infrastructure.error_handler import FormatError, ValidationError
from iptsync.models.rule_models import RuleSpec
from iptsync.services.compiler_service import RuleCompiler
from iptsync.services.parser_service import LiveStateParser
from iptsync.utils.ip_utils import AddressNormalizer
from iptsync.utils.rule_syntax import LIVE_ATTRIBUTES

from conftest import SSH_RULE


@pytest.fixture
def compiler():
    return RuleCompiler(AddressNormalizer(use_cidr=True))


def texts(rules):
    return [rule.canonical_text for rule in rules]


class TestBasicRendering:
    """测试基本输出"""

    def test_ssh_rule(self, compiler, ssh_spec):
        """测试单条tcp规则的规范文本"""
        rules = compiler.compile(ssh_spec)

        assert texts(rules) == [SSH_RULE]
        assert rules[0].table == "filter"
        assert rules[0].chain == "INPUT"
        assert rules[0].priority == 2
        assert rules[0].name == "ssh"

    def test_compile_is_pure(self, compiler, ssh_spec):
        """测试相同输入总是得到相同文本，与调用顺序无关"""
        other = RuleSpec(name="web", dport=["80", "443"])
        first = texts(compiler.compile(ssh_spec))
        compiler.compile(other)
        second = texts(RuleCompiler(AddressNormalizer()).compile(ssh_spec))

        assert first == second == texts(compiler.compile(ssh_spec))

    def test_proto_all_has_no_protocol_clause(self, compiler):
        """测试proto为all时不输出协议子句"""
        rules = compiler.compile(RuleSpec(name="drop all", proto="all", jump="DROP"))
        assert texts(rules) == ['-A INPUT -m comment --comment "drop all" -j DROP']

    @pytest.mark.parametrize("proto", ["vrrp", "igmp"])
    def test_protocols_without_match_extension(self, compiler, proto):
        """测试vrrp/igmp没有 -m 扩展"""
        rules = compiler.compile(RuleSpec(name="p", proto=proto))
        assert rules[0].canonical_text.startswith(f"-A INPUT -p {proto} -m comment")

    def test_clause_order(self, compiler):
        """测试各子句按固定顺序输出"""
        spec = RuleSpec(
            name="full", chain="FORWARD", proto="tcp", source="10.0.0.0/8",
            destination="192.168.1.1", iniface="eth0", outiface="eth1",
            sport="1024:65535", dport="443", state=["ESTABLISHED", "NEW"],
            limit="10/sec", burst="20", jump="REJECT",
        )
        assert texts(compiler.compile(spec)) == [
            '-A FORWARD -s 10.0.0.0/8 -d 192.168.1.1 -i eth0 -o eth1 -p tcp -m tcp '
            '--sport 1024:65535 --dport 443 -m state --state NEW,ESTABLISHED '
            '-m comment --comment "full" -m limit --limit 10/sec --limit-burst 20 '
            '-j REJECT --reject-with icmp-port-unreachable'
        ]


class TestChainsAndInterfaces:
    """测试表/链与接口校验"""

    @pytest.mark.parametrize("table,chain", [
        ("filter", "PREROUTING"),
        ("filter", "POSTROUTING"),
        ("nat", "INPUT"),
        ("nat", "FORWARD"),
        ("raw", "INPUT"),
        ("raw", "FORWARD"),
        ("raw", "POSTROUTING"),
    ])
    def test_forbidden_chains(self, compiler, table, chain):
        """测试表禁止的链"""
        with pytest.raises(ValidationError):
            compiler.compile(RuleSpec(name="bad", table=table, chain=chain, proto="all"))

    @pytest.mark.parametrize("table,chain", [
        ("mangle", "PREROUTING"),
        ("mangle", "POSTROUTING"),
        ("raw", "PREROUTING"),
        ("nat", "OUTPUT"),
    ])
    def test_allowed_chains(self, compiler, table, chain):
        """测试允许的链"""
        rules = compiler.compile(RuleSpec(name="ok", table=table, chain=chain, proto="all"))
        assert rules[0].table == table

    def test_iniface_rejected_on_output(self, compiler):
        """测试 -i 不能用于OUTPUT"""
        with pytest.raises(ValidationError):
            compiler.compile(RuleSpec(name="bad", chain="OUTPUT", iniface="eth0"))

    def test_outiface_rejected_on_input(self, compiler):
        """测试 -o 不能用于INPUT"""
        with pytest.raises(ValidationError):
            compiler.compile(RuleSpec(name="bad", chain="INPUT", outiface="eth0"))


class TestPorts:
    """测试端口与multiport"""

    def test_fifteen_ports_use_multiport(self, compiler):
        """测试15个端口使用multiport"""
        ports = [str(p) for p in range(1000, 1015)]
        rules = compiler.compile(RuleSpec(name="many", dport=ports))
        assert f"-m multiport --dports {','.join(ports)}" in rules[0].canonical_text

    def test_sixteen_ports_rejected(self, compiler):
        """测试16个端口被拒绝"""
        ports = [str(p) for p in range(1000, 1016)]
        with pytest.raises(ValidationError):
            compiler.compile(RuleSpec(name="too many", dport=ports))

    def test_sport_multiport(self, compiler):
        """测试源端口列表"""
        rules = compiler.compile(RuleSpec(name="s", proto="udp", sport=[53, 123]))
        assert "-p udp -m udp -m multiport --sports 53,123" in rules[0].canonical_text

    def test_ports_only_for_tcp_udp(self, compiler):
        """测试端口只能用于tcp/udp"""
        with pytest.raises(ValidationError):
            compiler.compile(RuleSpec(name="bad", proto="icmp", dport="22"))


class TestMatchExtensions:
    """测试icmp/state/limit"""

    def test_icmp_name_translated(self, compiler):
        """测试icmp符号名转换为数字"""
        rules = compiler.compile(RuleSpec(name="ping", proto="icmp", icmp="echo-request"))
        assert "-p icmp -m icmp --icmp-type 8 " in rules[0].canonical_text

    def test_icmp_with_code(self, compiler):
        """测试带code的icmp类型"""
        rules = compiler.compile(RuleSpec(name="ping", proto="icmp", icmp="host-unreachable"))
        assert "--icmp-type 3/1 " in rules[0].canonical_text

    def test_icmp_defaults_to_any(self, compiler):
        """测试未指定icmp类型时为any"""
        rules = compiler.compile(RuleSpec(name="icmp", proto="icmp"))
        assert "--icmp-type any " in rules[0].canonical_text

    def test_unknown_icmp_rejected(self, compiler):
        """测试未知icmp名称"""
        with pytest.raises(ValidationError):
            compiler.compile(RuleSpec(name="bad", proto="icmp", icmp="not-a-type"))

    def test_state_canonical_order(self, compiler):
        """测试state按固定顺序输出"""
        rules = compiler.compile(RuleSpec(name="st", state=["NEW", "ESTABLISHED", "INVALID"]))
        assert "-m state --state INVALID,NEW,ESTABLISHED" in rules[0].canonical_text

    def test_single_state(self, compiler):
        """测试单个state字符串"""
        rules = compiler.compile(RuleSpec(name="st", state="RELATED"))
        assert "-m state --state RELATED " in rules[0].canonical_text

    @pytest.mark.parametrize("state", [["NEW", "BOGUS"], ["NEW"] * 5, "UNTRACKED"])
    def test_invalid_state(self, compiler, state):
        """测试非法state"""
        with pytest.raises(ValidationError):
            compiler.compile(RuleSpec(name="st", state=state))

    @pytest.mark.parametrize("limit", ["50", "abc/sec", "5/week", "5.5/min"])
    def test_invalid_limit(self, compiler, limit):
        """测试非法limit"""
        with pytest.raises(ValidationError):
            compiler.compile(RuleSpec(name="lim", limit=limit))

    def test_burst_requires_limit(self, compiler):
        """测试burst必须和limit一起使用"""
        with pytest.raises(ValidationError):
            compiler.compile(RuleSpec(name="b", burst="5"))

    def test_burst_must_be_numeric(self, compiler):
        """测试burst必须是非负整数"""
        with pytest.raises(ValidationError):
            compiler.compile(RuleSpec(name="b", limit="5/min", burst="-1"))

    @pytest.mark.parametrize("limit,burst", [
        ("5/sec", "²"),
        ("5/sec", "٥"),
        ("٥/sec", ""),
        ("²/min", "10"),
    ])
    def test_non_ascii_digits_rejected(self, compiler, limit, burst):
        """测试limit/burst只接受ASCII数字"""
        with pytest.raises(ValidationError):
            compiler.compile(RuleSpec(name="lim", limit=limit, burst=burst))


class TestJumps:
    """测试跳转目标"""

    def test_dnat(self, compiler):
        """测试DNAT"""
        spec = RuleSpec(name="web dnat", table="nat", chain="PREROUTING", iniface="eth0",
                        dport=80, jump="DNAT", todest="10.0.0.5:8080")
        assert texts(compiler.compile(spec)) == [
            '-A PREROUTING -i eth0 -p tcp -m tcp --dport 80 -m comment --comment "web dnat" '
            '-j DNAT --to-destination 10.0.0.5:8080'
        ]

    def test_dnat_requires_nat_table(self, compiler):
        """测试DNAT只能用于nat表"""
        with pytest.raises(ValidationError):
            compiler.compile(RuleSpec(name="d", chain="OUTPUT", jump="DNAT", todest="1.2.3.4"))

    def test_dnat_requires_todest(self, compiler):
        """测试DNAT缺少todest"""
        with pytest.raises(ValidationError):
            compiler.compile(RuleSpec(name="d", table="nat", chain="PREROUTING", jump="DNAT"))

    def test_snat_requires_tosource(self, compiler):
        """测试SNAT缺少tosource"""
        with pytest.raises(ValidationError):
            compiler.compile(RuleSpec(name="s", table="nat", chain="POSTROUTING", jump="SNAT"))

    def test_snat(self, compiler):
        """测试SNAT"""
        rules = compiler.compile(RuleSpec(name="s", table="nat", chain="POSTROUTING",
                                          proto="all", jump="SNAT", tosource="203.0.113.1"))
        assert rules[0].canonical_text.endswith("-j SNAT --to-source 203.0.113.1")

    def test_redirect_requires_toports(self, compiler):
        """测试REDIRECT缺少toports"""
        with pytest.raises(ValidationError):
            compiler.compile(RuleSpec(name="r", table="nat", chain="PREROUTING", jump="REDIRECT"))

    def test_masquerade_requires_nat(self, compiler):
        """测试MASQUERADE只能用于nat表"""
        with pytest.raises(ValidationError):
            compiler.compile(RuleSpec(name="m", chain="OUTPUT", jump="MASQUERADE"))

    def test_reject_with_custom_type(self, compiler):
        """测试自定义reject类型"""
        rules = compiler.compile(RuleSpec(name="r", jump="REJECT", reject="tcp-reset"))
        assert rules[0].canonical_text.endswith("-j REJECT --reject-with tcp-reset")

    def test_log_prefix_truncated(self, compiler):
        """测试LOG前缀截断为27个字符并追加 ': '"""
        prefix = "A" * 40
        rules = compiler.compile(RuleSpec(name="log", jump="LOG", log_level="4", log_prefix=prefix))
        assert rules[0].canonical_text.endswith(f'-j LOG --log-level 4 --log-prefix "{"A" * 27}: "')
        assert rules[0].snapshot['log_prefix'] == "A" * 27 + ": "


class TestAddresses:
    """测试地址输出与源地址展开"""

    def test_sources_fan_out(self, compiler):
        """测试多个源地址展开为多条同名规则"""
        rules = compiler.compile(RuleSpec(name="admins", source=["10.0.0.1", "10.1.0.0/16"]))
        assert [r.source for r in rules] == ["10.0.0.1", "10.1.0.0/16"]
        assert all(r.name == "admins" for r in rules)
        assert rules[0].canonical_text.startswith("-A INPUT -s 10.0.0.1 -p tcp")

    def test_legacy_netmask_form(self):
        """测试旧版iptables使用点分掩码"""
        compiler = RuleCompiler(AddressNormalizer(use_cidr=False))
        rules = compiler.compile(RuleSpec(name="legacy", source="10.22.100.0/24", destination="10.0.0.1/32"))
        assert "-s 10.22.100.0/255.255.255.0 -d 10.0.0.1 " in rules[0].canonical_text

    def test_bad_netmask(self, compiler):
        """测试非连续掩码"""
        with pytest.raises(FormatError):
            compiler.compile(RuleSpec(name="bad", source="10.0.0.0/255.0.255.0"))


class TestParserSymmetry:
    """测试编译输出可以被解析器还原为相同属性"""

    @pytest.mark.parametrize("spec", [
        RuleSpec(name="web dnat", table="nat", chain="PREROUTING", iniface="eth0",
                 dport=["80", "8080"], jump="DNAT", todest="10.0.0.5"),
        RuleSpec(name="log it", chain="FORWARD", proto="udp", sport="53", state=["RELATED", "NEW"],
                 limit="5/min", burst="10", jump="LOG", log_level="4", log_prefix="dropped packets"),
        RuleSpec(name="ping", proto="icmp", icmp="echo-request", jump="ACCEPT"),
        RuleSpec(name="all out", chain="OUTPUT", proto="all", outiface="eth1", jump="REJECT"),
    ])
    def test_round_trip_attributes(self, compiler, spec):
        """测试编译属性与解析属性一致"""
        parser = LiveStateParser(compiler.normalizer)
        for rule in compiler.compile(spec):
            parsed = parser.parse_rule(rule.canonical_text, rule.table)
            for attr in LIVE_ATTRIBUTES:
                if attr in ('source', 'destination'):
                    continue
                assert parsed[attr] == rule.snapshot[attr], attr
