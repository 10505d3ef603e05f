# -*- coding: utf-8 -*-
"""
配置管理模块
管理应用程序配置，支持YAML文件
"""

import copy
import yaml
from pathlib import Path
from typing import Dict, Any

from .error_handler import handle_config_error, ConfigError


DEFAULT_CONFIG: Dict[str, Any] = {
    'iptables': {
        'iptables_cmd': '/sbin/iptables',
        'save_cmd': '/sbin/iptables-save',
    },
    'rules': {
        'pre_file': '/etc/iptsync/pre.iptables',
        'post_file': '/etc/iptsync/post.iptables',
    },
    'persist': {
        # None表示根据操作系统自动选择
        'command': None,
    },
    'convergence': {
        'dry_run': False,
    },
    'logging': {
        'level': 'INFO',
        'file': None,
    },
}


class Config:
    """配置管理类"""

    def __init__(self, config_file: str = "config/default.yaml"):
        self.config_file = Path(config_file)
        self._config = self._load_config()

    @handle_config_error
    def _load_config(self) -> Dict[str, Any]:
        """加载配置文件，文件中缺失的键使用默认值"""
        config = self._get_default_config()
        if self.config_file.exists():
            with open(self.config_file, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}
            if not isinstance(loaded, dict):
                raise ConfigError(f"配置文件格式错误: {self.config_file}")
            self._merge(config, loaded)
        return config

    def _get_default_config(self) -> Dict[str, Any]:
        """获取默认配置"""
        return copy.deepcopy(DEFAULT_CONFIG)

    @staticmethod
    def _merge(base: Dict[str, Any], override: Dict[str, Any]):
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                Config._merge(base[key], value)
            else:
                base[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """获取配置值"""
        keys = key.split('.')
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any):
        """设置配置值"""
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def save(self):
        """保存配置到文件"""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, 'w', encoding='utf-8') as f:
            yaml.dump(self._config, f, default_flow_style=False, allow_unicode=True)

    def reload(self):
        """重新加载配置"""
        self._config = self._load_config()
