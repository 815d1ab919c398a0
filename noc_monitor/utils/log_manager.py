"""
日志管理器模块

为各组件提供统一的日志记录器，支持控制台与轮转文件输出。
组件通过 get_logger('scheduler') 这类短名称获取记录器，
实际记录器名称统一挂在 noc_monitor 命名空间下。
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional, Dict, Any
from enum import Enum


LOGGER_NAMESPACE = 'noc_monitor'


class LogLevel(Enum):
    """日志级别枚举"""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


class LogManager:
    """
    日志管理器类（单例）

    负责：
    - 控制台和文件日志输出
    - 日志级别配置
    - 日志文件轮转
    """

    _instance: Optional['LogManager'] = None
    _initialized: bool = False

    def __new__(cls) -> 'LogManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._loggers: Dict[str, logging.Logger] = {}
        self._file_format = (
            '%(asctime)s - %(name)s - %(levelname)s - '
            '[%(filename)s:%(lineno)d] - %(message)s'
        )
        self._console_format = '%(asctime)s - %(levelname)s - [%(name)s] %(message)s'
        self._date_format = '%Y-%m-%d %H:%M:%S'

        self._log_level = LogLevel.INFO
        self._log_file: Optional[str] = None
        self._max_file_size = 10 * 1024 * 1024  # 10MB
        self._backup_count = 5
        self._enable_console = True
        self._enable_file = False

        self._initialized = True

    def configure(self, config: Dict[str, Any]) -> None:
        """
        配置日志管理器

        已创建的记录器会按新配置重建处理器。

        Args:
            config: 日志配置字典，可选键：
                - log_level: 日志级别 (DEBUG, INFO, WARNING, ERROR, CRITICAL)
                - log_file: 日志文件路径，设置后启用文件输出
                - max_file_size: 单个日志文件最大字节数
                - backup_count: 轮转保留的文件数量
                - enable_console: 是否输出到控制台

        Raises:
            ValueError: 日志级别无效
        """
        if 'log_level' in config:
            level_str = str(config['log_level']).upper()
            if level_str not in LogLevel.__members__:
                raise ValueError(f"无效的日志级别: {level_str}")
            self._log_level = LogLevel[level_str]

        if config.get('log_file'):
            self._log_file = config['log_file']
            self._enable_file = True

        if 'max_file_size' in config:
            self._max_file_size = int(config['max_file_size'])

        if 'backup_count' in config:
            self._backup_count = int(config['backup_count'])

        if 'enable_console' in config:
            self._enable_console = bool(config['enable_console'])

        for name, logger in self._loggers.items():
            self._setup_handlers(logger)

    def get_logger(self, name: str) -> logging.Logger:
        """
        获取指定名称的日志记录器

        Args:
            name: 组件名称，例如 'scheduler' 或 'notifier.http.ops'

        Returns:
            配置好的日志记录器实例
        """
        if name in self._loggers:
            return self._loggers[name]

        full_name = name if name.startswith(LOGGER_NAMESPACE) else f'{LOGGER_NAMESPACE}.{name}'
        logger = logging.getLogger(full_name)
        self._setup_handlers(logger)

        self._loggers[name] = logger
        return logger

    def _setup_handlers(self, logger: logging.Logger) -> None:
        """重建记录器的处理器"""
        logger.setLevel(self._log_level.value)

        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

        if self._enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(self._log_level.value)
            console_handler.setFormatter(
                logging.Formatter(self._console_format, datefmt=self._date_format)
            )
            logger.addHandler(console_handler)

        if self._enable_file and self._log_file:
            Path(self._log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                self._log_file,
                maxBytes=self._max_file_size,
                backupCount=self._backup_count,
                encoding='utf-8'
            )
            file_handler.setLevel(self._log_level.value)
            file_handler.setFormatter(
                logging.Formatter(self._file_format, datefmt=self._date_format)
            )
            logger.addHandler(file_handler)

        # 防止重复输出到根记录器
        logger.propagate = False

    def set_level(self, level: LogLevel) -> None:
        """
        设置全局日志级别

        Args:
            level: 新的日志级别
        """
        self._log_level = level
        for logger in self._loggers.values():
            logger.setLevel(level.value)
            for handler in logger.handlers:
                handler.setLevel(level.value)

    def get_log_stats(self) -> Dict[str, Any]:
        """获取日志系统状态"""
        stats = {
            'loggers_count': len(self._loggers),
            'log_level': self._log_level.name,
            'file_logging_enabled': self._enable_file,
            'console_logging_enabled': self._enable_console,
            'log_file': self._log_file,
            'max_file_size': self._max_file_size,
            'backup_count': self._backup_count
        }

        if self._log_file and os.path.exists(self._log_file):
            stats['current_log_size'] = os.path.getsize(self._log_file)

        return stats

    def cleanup(self) -> None:
        """关闭所有处理器"""
        for logger in self._loggers.values():
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)

        self._loggers.clear()


# 全局日志管理器实例
log_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """
    获取日志记录器的便捷函数

    Args:
        name: 组件名称

    Returns:
        配置好的日志记录器实例
    """
    return log_manager.get_logger(name)


def configure_logging(config: Dict[str, Any]) -> None:
    """配置日志系统的便捷函数"""
    log_manager.configure(config)


def build_log_config(global_config: Dict[str, Any]) -> Dict[str, Any]:
    """
    将全局配置中的日志相关项转换为 LogManager 配置

    Args:
        global_config: YAML 中的 global 段

    Returns:
        LogManager.configure 可接受的配置字典
    """
    log_config: Dict[str, Any] = {
        'log_level': global_config.get('log_level', 'INFO'),
        'enable_console': True
    }

    if global_config.get('log_file'):
        log_config['log_file'] = global_config['log_file']
        log_config['max_file_size'] = global_config.get('max_log_size', 10 * 1024 * 1024)
        log_config['backup_count'] = global_config.get('log_backup_count', 5)

    return log_config
