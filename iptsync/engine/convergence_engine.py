# -*- coding: utf-8 -*-
"""
收敛引擎实现
对比声明规则与线上规则，驱动添加/删除/持久化操作
分两个阶段：先删除不在声明中的线上规则直到不动点，
再按序号比较，只要有任何差异就整体重建
"""

import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from iptsync.models.rule_models import (
    CompiledRule,
    ConvergenceReport,
    ReconciliationPlan,
    RuleSpec,
    TABLE_NAMES,
)
from iptsync.data_access.iptables_adapter import IptablesAdapter
from iptsync.data_access.rule_file_dao import RuleFileDAO
from iptsync.services.compiler_service import RuleCompiler
from iptsync.services.parser_service import LiveStateParser
from iptsync.services.registry_service import TableRegistry
from iptsync.utils.ip_utils import AddressNormalizer
from iptsync.infrastructure.logger import logger
from iptsync.infrastructure.error_handler import (
    FormatError,
    PersistenceUnavailable,
    ValidationError,
)


class ConvergenceEngine:
    """收敛引擎"""

    def __init__(self, adapter: IptablesAdapter, parser: LiveStateParser,
                 declared: Dict[str, List[CompiledRule]]):
        """
        初始化收敛引擎

        Args:
            adapter: iptables命令适配器
            parser: 线上规则解析器
            declared: 表名 -> 按最终顺序编号的声明规则
        """
        self.adapter = adapter
        self.parser = parser
        self.declared = declared

        # 收敛统计
        self.stats = {
            'prune_passes': 0,
            'listing_calls': 0,
        }

    def _load_live(self, numbered: bool = False):
        self.stats['listing_calls'] += 1
        return self.parser.parse(self.adapter.list_rules(), numbered)

    def prune_pass(self, report: Optional[ConvergenceReport] = None) -> int:
        """
        执行一轮删除：线上规则文本与任一声明规则完全相同则保留，其余删除

        Returns:
            本轮删除（dry-run时为将要删除）的规则数
        """
        self.stats['prune_passes'] += 1
        live = self._load_live(numbered=False)
        deleted = 0

        for table in TABLE_NAMES:
            live_rules = live.get(table, {})
            for rule in self.declared.get(table, []):
                entry = live_rules.get(rule.canonical_text)
                if entry is not None:
                    entry.keep = True

            for entry in live_rules.values():
                if entry.keep:
                    continue
                command = self.adapter.delete_rule(table, entry.line)
                if report is not None:
                    report.commands.append(command)
                deleted += 1

        logger.debug(f"第 {self.stats['prune_passes']} 轮删除: {deleted} 条规则")
        return deleted

    def prune(self, report: Optional[ConvergenceReport] = None) -> int:
        """
        重复删除直到某一轮删除数为0

        相同文本的重复规则在一次解析中只出现一次，每轮只能删掉其中一条，
        删除又会改变位置，所以每轮都重新解析。dry-run时不会真正删除，只执行一轮
        """
        total = 0
        while True:
            deleted = self.prune_pass(report)
            total += deleted
            if deleted == 0 or self.adapter.dry_run:
                break
        return total

    def plan(self) -> ReconciliationPlan:
        """按序号比较声明规则与线上规则，生成收敛计划"""
        live = self._load_live(numbered=True)
        changed = False

        for table in TABLE_NAMES:
            live_rules = live.get(table, {})
            for rule in self.declared.get(table, []):
                logger.debug(f"查找: {rule.numbered_key}")
                if rule.numbered_key not in live_rules:
                    changed = True
                    break
            if changed:
                break

        return ReconciliationPlan(
            to_add=[rule for table in TABLE_NAMES for rule in self.declared.get(table, [])],
            to_delete=[entry for table in TABLE_NAMES for entry in live.get(table, {}).values()],
            changed=changed,
        )

    def apply(self, plan: ReconciliationPlan, report: ConvergenceReport):
        """
        执行收敛计划：先添加全部声明规则，再逐条删除旧规则，最后持久化

        旧规则总在新规则之前，所以反复删除所在链的第1条就能清空旧规则。
        添加或删除失败时抛出ExecutionError，不做回滚，重新运行即可修正
        """
        if not plan.changed:
            logger.info("规则没有变化")
            return

        logger.info("规则有变化 (dry-run)..." if self.adapter.dry_run else "规则有变化...")
        started = time.perf_counter()

        for rule in plan.to_add:
            report.commands.append(self.adapter.append_rule(rule.table, rule.canonical_text))
            report.added += 1

        for entry in plan.to_delete:
            report.commands.append(self.adapter.delete_position(entry.table, entry.chain, 1))
            report.deleted += 1

        try:
            report.commands.append(self.adapter.persist())
            report.persisted = not self.adapter.dry_run
        except PersistenceUnavailable as e:
            logger.warning(f"{e}，规则不会被保存!")

        logger.info(f"规则更新完成: 添加 {report.added} 条, 删除 {report.deleted} 条, "
                    f"耗时 {time.perf_counter() - started:.2f} 秒")

    def run(self, report: Optional[ConvergenceReport] = None) -> ConvergenceReport:
        """执行完整的收敛流程"""
        report = report or ConvergenceReport()
        report.dry_run = self.adapter.dry_run

        report.pruned = self.prune(report)
        plan = self.plan()
        report.changed = plan.changed
        self.apply(plan, report)
        return report


class ConvergenceSession:
    """
    一次收敛运行的会话

    先多次调用declare()声明规则，再调用一次converge()；
    会话内保存全部运行状态，下一次运行应创建新的会话
    """

    def __init__(self, adapter: IptablesAdapter, use_cidr: Optional[bool] = None,
                 pre_file: Optional[str] = None, post_file: Optional[str] = None,
                 rule_file_dao: Optional[RuleFileDAO] = None):
        """
        初始化会话

        Args:
            adapter: iptables命令适配器
            use_cidr: 地址输出形式，None表示通过版本探测确定
            pre_file: pre静态规则文件
            post_file: post静态规则文件
            rule_file_dao: 规则文件读取对象
        """
        self.adapter = adapter
        if use_cidr is None:
            use_cidr = adapter.probe_cidr_support()
        self.normalizer = AddressNormalizer(use_cidr)
        self.compiler = RuleCompiler(self.normalizer)
        self.registry = TableRegistry(self.compiler.processors)
        self.parser = LiveStateParser(self.normalizer)
        self.rule_file_dao = rule_file_dao or RuleFileDAO()
        self.pre_file = pre_file
        self.post_file = post_file

        self.skipped: List[str] = []
        self.finalized = False
        self.report: Optional[ConvergenceReport] = None

    @classmethod
    def from_config(cls, config, dry_run: Optional[bool] = None,
                    use_cidr: Optional[bool] = None) -> 'ConvergenceSession':
        """从Config对象创建会话"""
        return cls(
            IptablesAdapter.from_config(config, dry_run=dry_run),
            use_cidr=use_cidr,
            pre_file=config.get('rules.pre_file'),
            post_file=config.get('rules.post_file'),
        )

    def declare(self, spec: Union[RuleSpec, Mapping[str, Any]]) -> List[CompiledRule]:
        """
        声明一条规则

        非法规则记录错误日志后跳过，不影响其它规则

        Returns:
            编译得到的规则，被跳过时为空列表
        """
        name = spec.name if isinstance(spec, RuleSpec) else str(spec.get('name', '<unnamed>'))
        try:
            if not isinstance(spec, RuleSpec):
                spec = RuleSpec.from_dict(spec)
            rules = self.compiler.compile(spec)
        except (ValidationError, FormatError) as e:
            logger.error(f"规则 '{name}' 无效: {e}")
            self.skipped.append(name)
            return []

        self.registry.add(rules)
        return rules

    def declare_all(self, specs: Iterable[Union[RuleSpec, Mapping[str, Any]]]) -> int:
        """声明多条规则，返回编译得到的规则数"""
        return sum(len(self.declare(spec)) for spec in specs)

    def build(self) -> Dict[str, List[CompiledRule]]:
        """生成最终排序编号后的声明规则集"""
        pre = self.rule_file_dao.load_static_rules(self.pre_file)
        post = self.rule_file_dao.load_static_rules(self.post_file)
        return self.registry.build(pre, post)

    def converge(self) -> ConvergenceReport:
        """
        执行收敛，每个会话只执行一次，重复调用直接返回上次的结果

        Raises:
            ExecutionError: 外部命令执行失败，剩余操作被中止
        """
        if self.finalized:
            logger.debug("会话已完成收敛，忽略重复调用")
            return self.report

        declared = self.build()
        engine = ConvergenceEngine(self.adapter, self.parser, declared)
        report = ConvergenceReport(skipped=list(self.skipped))
        engine.run(report)

        self.report = report
        self.finalized = True
        return report
