# -*- coding: utf-8 -*-
"""
格式化工具
把编译结果、线上规则和收敛结果渲染为文本或rich表格
"""

from typing import Dict, List, Optional
import json

from rich.table import Table

from iptsync.models.rule_models import CompiledRule, ConvergenceReport, LiveRule


class FormatUtils:
    """格式化工具类"""

    @staticmethod
    def format_ruleset(ruleset: Dict[str, List[CompiledRule]]) -> str:
        """以iptables-save相似的形式输出声明规则集"""
        lines = []
        for table, rules in ruleset.items():
            if not rules:
                continue
            lines.append(f"*{table}")
            lines.extend(rule.canonical_text for rule in rules)
            lines.append("COMMIT")
        return "\n".join(lines)

    @staticmethod
    def format_ruleset_summary(ruleset: Dict[str, List[CompiledRule]]) -> str:
        """格式化规则统计摘要"""
        summary_lines = ["声明规则统计:"]

        for table, rules in ruleset.items():
            if not rules:
                continue
            chain_counts: Dict[str, int] = {}
            for rule in rules:
                chain_counts[rule.chain] = chain_counts.get(rule.chain, 0) + 1
            chain_str = ", ".join(f"{chain}: {count}" for chain, count in chain_counts.items())
            summary_lines.append(f"├── {table}表: {len(rules)}条规则 ({chain_str})")

        return "\n".join(summary_lines)

    @staticmethod
    def live_rules_table(live: Dict[str, Dict[str, LiveRule]], table: Optional[str] = None) -> Table:
        """把线上规则渲染为rich表格"""
        view = Table(title="线上规则")
        view.add_column("表")
        view.add_column("#", justify="right")
        view.add_column("链")
        view.add_column("协议")
        view.add_column("源")
        view.add_column("目标")
        view.add_column("跳转")
        view.add_column("名称")

        for table_name, rules in live.items():
            if table and table_name != table:
                continue
            for index, rule in enumerate(rules.values(), start=1):
                attrs = rule.attributes
                view.add_row(
                    table_name,
                    str(rule.position or index),
                    rule.chain,
                    attrs.get('proto') or "",
                    attrs.get('source') or "*",
                    attrs.get('destination') or "*",
                    attrs.get('jump') or "",
                    attrs.get('name') or "",
                )
        return view

    @staticmethod
    def format_report(report: ConvergenceReport, output_format: str = "text") -> str:
        """格式化收敛结果"""
        if output_format == "json":
            return json.dumps(report.to_dict(), indent=2, ensure_ascii=False)

        if output_format != "text":
            raise ValueError(f"不支持的输出格式: {output_format}")

        lines = ["=== 收敛结果 (dry-run) ===" if report.dry_run else "=== 收敛结果 ==="]
        lines.append(f"清理的多余规则: {report.pruned}")
        lines.append(f"规则是否变化: {'是' if report.changed else '否'}")
        lines.append(f"添加: {report.added}  删除: {report.deleted}")
        lines.append(f"已持久化: {'是' if report.persisted else '否'}")
        if report.skipped:
            lines.append(f"跳过的无效规则: {', '.join(report.skipped)}")
        if report.commands:
            lines.append("")
            lines.append("=== 命令 ===")
            lines.extend(report.commands)
        return "\n".join(lines)
