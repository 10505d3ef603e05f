# -*- coding: utf-8 -*-
"""
CLI主入口
提供规则收敛、预演、编译和查看线上规则的命令行接口
"""

import sys
from enum import Enum
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from iptsync.infrastructure.config import Config
from iptsync.infrastructure.logger import logger
from iptsync.infrastructure.error_handler import IptsyncError
from iptsync.data_access.iptables_adapter import IptablesAdapter
from iptsync.data_access.rule_file_dao import RuleFileDAO
from iptsync.engine.convergence_engine import ConvergenceSession
from iptsync.services.parser_service import LiveStateParser
from iptsync.utils.ip_utils import AddressNormalizer
from iptsync.utils.format_utils import FormatUtils

VERSION = "0.1.0"

app = typer.Typer(
    name="iptsync",
    help="声明式iptables规则收敛工具",
    add_completion=False
)

console = Console()


class OutputFormat(str, Enum):
    """收敛结果的输出格式"""
    TEXT = "text"
    JSON = "json"


def _load_config(config_file: Path, debug: bool = False,
                 pre_file: Optional[Path] = None, post_file: Optional[Path] = None) -> Config:
    """加载配置并按配置设置日志"""
    config = Config(str(config_file))
    if pre_file is not None:
        config.set('rules.pre_file', str(pre_file))
    if post_file is not None:
        config.set('rules.post_file', str(post_file))

    logger.configure(
        level="DEBUG" if debug else config.get('logging.level', 'INFO'),
        log_file=config.get('logging.file'),
    )
    return config


def _converge(rules_file: Path, config: Config, dry_run: bool, output_format: OutputFormat):
    declarations = RuleFileDAO().load_rule_declarations(rules_file)
    session = ConvergenceSession.from_config(config, dry_run=dry_run)
    session.declare_all(declarations)

    report = session.converge()
    typer.echo(FormatUtils.format_report(report, output_format.value))
    if report.skipped:
        typer.echo(f"⚠️ {len(report.skipped)} 条规则无效，已跳过", err=True)


@app.command()
def apply(
    rules_file: Path = typer.Argument(..., help="规则声明YAML文件路径"),
    dry_run: bool = typer.Option(False, "--dry-run", help="只显示将要执行的命令"),
    pre_file: Optional[Path] = typer.Option(None, "--pre", help="pre静态规则文件"),
    post_file: Optional[Path] = typer.Option(None, "--post", help="post静态规则文件"),
    config_file: Path = typer.Option("config/default.yaml", "--config", "-c", help="配置文件路径"),
    output_format: OutputFormat = typer.Option(OutputFormat.TEXT, "--format", "-f", help="输出格式"),
    debug: bool = typer.Option(False, "--debug", help="开启调试模式，显示详细日志")
):
    """把线上iptables规则收敛到声明的规则集"""
    try:
        config = _load_config(config_file, debug, pre_file, post_file)
        effective_dry_run = dry_run or config.get('convergence.dry_run', False)
        logger.info(f"开始收敛，规则文件: {rules_file}, dry-run: {effective_dry_run}")
        _converge(rules_file, config, effective_dry_run, output_format)

    except IptsyncError as e:
        logger.error(f"收敛失败: {e}")
        typer.echo(f"❌ 收敛失败: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def plan(
    rules_file: Path = typer.Argument(..., help="规则声明YAML文件路径"),
    pre_file: Optional[Path] = typer.Option(None, "--pre", help="pre静态规则文件"),
    post_file: Optional[Path] = typer.Option(None, "--post", help="post静态规则文件"),
    config_file: Path = typer.Option("config/default.yaml", "--config", "-c", help="配置文件路径"),
    output_format: OutputFormat = typer.Option(OutputFormat.TEXT, "--format", "-f", help="输出格式"),
    debug: bool = typer.Option(False, "--debug", help="开启调试模式，显示详细日志")
):
    """预演收敛过程，不修改线上规则"""
    try:
        config = _load_config(config_file, debug, pre_file, post_file)
        _converge(rules_file, config, True, output_format)

    except IptsyncError as e:
        logger.error(f"预演失败: {e}")
        typer.echo(f"❌ 预演失败: {e}", err=True)
        raise typer.Exit(1)


@app.command("compile")
def compile_rules(
    rules_file: Path = typer.Argument(..., help="规则声明YAML文件路径"),
    cidr: Optional[bool] = typer.Option(None, "--cidr/--legacy", help="地址形式，默认通过iptables版本探测"),
    pre_file: Optional[Path] = typer.Option(None, "--pre", help="pre静态规则文件"),
    post_file: Optional[Path] = typer.Option(None, "--post", help="post静态规则文件"),
    config_file: Path = typer.Option("config/default.yaml", "--config", "-c", help="配置文件路径"),
    debug: bool = typer.Option(False, "--debug", help="开启调试模式，显示详细日志")
):
    """编译规则声明并输出最终的规则集"""
    try:
        config = _load_config(config_file, debug, pre_file, post_file)
        declarations = RuleFileDAO().load_rule_declarations(rules_file)
        session = ConvergenceSession.from_config(config, dry_run=True, use_cidr=cidr)
        session.declare_all(declarations)
        ruleset = session.build()

        typer.echo(FormatUtils.format_ruleset(ruleset))
        typer.echo(FormatUtils.format_ruleset_summary(ruleset), err=True)
        if session.skipped:
            typer.echo(f"⚠️ 跳过的无效规则: {', '.join(session.skipped)}", err=True)

    except IptsyncError as e:
        logger.error(f"编译失败: {e}")
        typer.echo(f"❌ 编译失败: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def show(
    numbered: bool = typer.Option(False, "--numbered", "-n", help="显示表内序号"),
    table: Optional[str] = typer.Option(None, "--table", "-t", help="只显示指定表"),
    config_file: Path = typer.Option("config/default.yaml", "--config", "-c", help="配置文件路径"),
    debug: bool = typer.Option(False, "--debug", help="开启调试模式，显示详细日志")
):
    """解析并显示线上规则"""
    try:
        config = _load_config(config_file, debug)
        adapter = IptablesAdapter.from_config(config)
        parser = LiveStateParser(AddressNormalizer(adapter.probe_cidr_support()))
        live = parser.parse(adapter.list_rules(), numbered)
        console.print(FormatUtils.live_rules_table(live, table))

    except IptsyncError as e:
        logger.error(f"读取线上规则失败: {e}")
        typer.echo(f"❌ 读取线上规则失败: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def version():
    """显示版本信息"""
    typer.echo(f"iptsync v{VERSION}")
    typer.echo("声明式iptables规则收敛工具")


def main():
    """主函数"""
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("\n👋 程序已退出")
        sys.exit(0)


if __name__ == "__main__":
    main()
