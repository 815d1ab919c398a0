"""配置文件监控器"""

import asyncio
import logging
import os
from typing import Any, Callable, Dict, List, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .config_manager import ConfigManager
from ..utils.exceptions import ConfigError

ConfigChangeCallback = Callable[[Dict[str, Any], Dict[str, Any]], None]


class ConfigFileHandler(FileSystemEventHandler):
    """配置文件变更事件处理器"""

    def __init__(self, config_path: str, callback: Callable[[], None]):
        """
        Args:
            config_path: 配置文件绝对路径
            callback: 配置变更回调函数
        """
        self.config_path = config_path
        self.callback = callback
        self.logger = logging.getLogger(__name__)

    def _matches(self, path) -> bool:
        return os.path.abspath(os.fsdecode(path)) == self.config_path

    def on_modified(self, event):
        if not event.is_directory and self._matches(event.src_path):
            self.logger.info(f"检测到配置文件变更: {self.config_path}")
            self.callback()

    def on_created(self, event):
        self.on_modified(event)

    def on_moved(self, event):
        # 编辑器通常先写临时文件再重命名覆盖
        if not event.is_directory and self._matches(event.dest_path):
            self.logger.info(f"检测到配置文件被替换: {self.config_path}")
            self.callback()


class ConfigWatcher:
    """配置文件监控器，支持热更新

    watchdog 在独立线程中触发事件；传入事件循环后，重新加载和回调在事件循环线程中执行。
    """

    def __init__(self, config_manager: ConfigManager,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        """
        Args:
            config_manager: 配置管理器实例
            loop: 执行回调的事件循环，为None时在 watchdog 线程中直接执行
        """
        self.config_manager = config_manager
        self.loop = loop
        self.observer: Optional[Observer] = None
        self.change_callbacks: List[ConfigChangeCallback] = []
        self.reload_count = 0
        self.logger = logging.getLogger(__name__)
        self._running = False

    def add_change_callback(self, callback: ConfigChangeCallback):
        """
        添加配置变更回调函数

        Args:
            callback: 回调函数，参数为(旧配置, 新配置)
        """
        self.change_callbacks.append(callback)

    def remove_change_callback(self, callback: ConfigChangeCallback):
        if callback in self.change_callbacks:
            self.change_callbacks.remove(callback)

    def _on_file_event(self):
        if self.loop is not None and not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self._on_config_changed)
        else:
            self._on_config_changed()

    def _on_config_changed(self):
        """重新加载配置并通知回调，文件内容未变化时忽略"""
        if not self.config_manager.is_config_changed():
            return

        old_config = self.config_manager.config
        try:
            new_config = self.config_manager.reload_config()
        except ConfigError as e:
            self.logger.error(f"配置重新加载失败，继续使用原配置: {e.format_error()}")
            return

        self.reload_count += 1
        self.logger.info("配置文件已重新加载")

        for callback in self.change_callbacks:
            try:
                callback(old_config, new_config)
            except Exception as e:
                self.logger.error(f"配置变更回调执行失败: {e}")

    def start_watching(self):
        """开始监控配置文件"""
        if self._running:
            self.logger.warning("配置监控器已经在运行")
            return

        config_path = os.path.abspath(self.config_manager.config_path)
        try:
            self.observer = Observer()
            handler = ConfigFileHandler(config_path, self._on_file_event)
            self.observer.schedule(handler, os.path.dirname(config_path), recursive=False)
            self.observer.start()
        except Exception as e:
            self.logger.error(f"启动配置监控失败: {e}")
            raise ConfigError(f"启动配置监控失败: {e}", config_path=config_path, cause=e)

        self._running = True
        self.logger.info(f"开始监控配置文件: {self.config_manager.config_path}")

    def stop_watching(self):
        """停止监控配置文件"""
        if not self._running:
            return

        if self.observer:
            self.observer.stop()
            self.observer.join()
            self.observer = None

        self._running = False
        self.logger.info("配置文件监控已停止")

    def is_running(self) -> bool:
        return self._running

    async def watch_config_changes_async(self, check_interval: float = 5):
        """
        轮询方式监控配置变更，watchdog 不可用的文件系统上使用

        Args:
            check_interval: 检查间隔（秒）
        """
        self.logger.info(f"开始轮询配置文件变更，检查间隔: {check_interval}秒")

        while True:
            try:
                self._on_config_changed()
            except Exception as e:
                self.logger.error(f"配置监控过程中发生错误: {e}")
            await asyncio.sleep(check_interval)

    def __enter__(self):
        self.start_watching()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop_watching()
