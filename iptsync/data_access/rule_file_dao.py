# -*- coding: utf-8 -*-
"""
规则文件数据访问对象
读取pre/post静态规则文件和YAML格式的规则声明文件
"""

from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

import yaml

from iptsync.utils.rule_syntax import strip_table_selector
from iptsync.infrastructure.logger import logger
from iptsync.infrastructure.error_handler import ConfigError, handle_config_error


DEFAULT_TABLE = "filter"


class RuleFileDAO:
    """规则文件数据访问对象"""

    def load_static_rules(self, file_name: Union[str, Path, None]) -> List[Tuple[str, str]]:
        """
        读取pre/post静态规则文件

        跳过空行和#注释行，每行可带 '-t <table>' 选择器（默认filter）

        Args:
            file_name: 文件路径，为空或文件不存在时返回空列表

        Returns:
            (表名, 去掉选择器后的规则文本) 列表，保持文件顺序
        """
        if not file_name:
            return []

        path = Path(file_name)
        if not path.exists():
            logger.debug(f"静态规则文件不存在，跳过: {path}")
            return []

        entries = []
        with open(path, 'r', encoding='utf-8') as infile:
            for line in infile:
                text = line.strip()
                if not text or text.startswith('#'):
                    continue
                table, rule = strip_table_selector(text)
                entries.append((table or DEFAULT_TABLE, rule))

        logger.info(f"从 {path} 读取了 {len(entries)} 条静态规则")
        return entries

    @handle_config_error
    def load_rule_declarations(self, file_name: Union[str, Path]) -> List[Dict[str, Any]]:
        """
        读取YAML规则声明文件

        支持三种写法：顶层列表；'rules' 键下的列表；'rules' 键下以规则名为键的映射
        """
        path = Path(file_name)
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        if isinstance(data, dict):
            data = data.get('rules', [])

        if isinstance(data, dict):
            declarations = []
            for name, attrs in data.items():
                item = dict(attrs or {})
                item.setdefault('name', name)
                declarations.append(item)
        elif isinstance(data, list):
            declarations = [dict(item) for item in data if isinstance(item, dict)]
            if len(declarations) != len(data):
                raise ConfigError(f"规则声明文件中存在非映射项: {path}")
        else:
            raise ConfigError(f"规则声明文件格式错误: {path}")

        logger.info(f"从 {path} 读取了 {len(declarations)} 条规则声明")
        return declarations
