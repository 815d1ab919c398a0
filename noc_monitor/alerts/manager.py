"""通知管理器"""

import asyncio
import logging
from typing import Dict, List, Any, Optional

from .base import BaseNotifier
from .http_notifier import HTTPNotifier
from .log_notifier import LogNotifier
from ..models.alert import Notification
from ..utils.exceptions import NotificationConfigError

NOTIFIER_TYPES = {
    'http': HTTPNotifier,
    'log': LogNotifier,
}


def create_notifier(config: Dict[str, Any]) -> BaseNotifier:
    """
    根据配置创建通知器

    Args:
        config: 通知器配置，必须包含 type

    Returns:
        BaseNotifier: 通知器实例

    Raises:
        NotificationConfigError: 类型不支持或配置无效
    """
    notifier_type = str(config.get('type', '')).lower()
    name = config.get('name') or notifier_type
    notifier_class = NOTIFIER_TYPES.get(notifier_type)
    if notifier_class is None:
        raise NotificationConfigError(
            f"不支持的通知器类型: {notifier_type}，支持的类型: {sorted(NOTIFIER_TYPES)}",
            notifier_name=name
        )
    return notifier_class(name, config)


class NotificationManager:
    """通知管理器，将通知并发投递到所有通知器，单个通知器失败不影响其他通知器"""

    def __init__(self, notifier_configs: Optional[List[Dict[str, Any]]] = None):
        """
        初始化通知管理器

        Args:
            notifier_configs: 通知器配置列表
        """
        self.notifiers: List[BaseNotifier] = []
        self.logger = logging.getLogger(__name__)
        self.sent_count = 0
        self.failed_count = 0

        if notifier_configs:
            self.load_notifiers(notifier_configs)

    def load_notifiers(self, notifier_configs: List[Dict[str, Any]]) -> None:
        """按配置重建通知器，配置错误的通知器会被跳过"""
        self.notifiers = []
        for config in notifier_configs:
            try:
                self.add_notifier(create_notifier(config))
            except NotificationConfigError as e:
                self.logger.error(f"初始化通知器失败 {config.get('name', 'unknown')}: {e.format_error()}")

    def add_notifier(self, notifier: BaseNotifier):
        if not isinstance(notifier, BaseNotifier):
            raise NotificationConfigError(f"通知器必须继承自BaseNotifier: {type(notifier)}")

        self.notifiers.append(notifier)
        self.logger.info(f"已添加通知器: {notifier.name} ({notifier.notifier_type})")

    def remove_notifier(self, name: str) -> bool:
        for i, notifier in enumerate(self.notifiers):
            if notifier.name == name:
                self.notifiers.pop(i)
                self.logger.info(f"已移除通知器: {name}")
                return True
        return False

    async def dispatch(self, notification: Notification) -> Dict[str, bool]:
        """
        投递通知

        Args:
            notification: 通知负载

        Returns:
            Dict[str, bool]: 通知器名称 -> 是否发送成功
        """
        targets = [n for n in self.notifiers if n.accepts(notification)]
        if not targets:
            self.logger.warning(f"没有可用的通知器，跳过通知: {notification.title}")
            return {}

        results = await asyncio.gather(
            *(self._send_to_notifier(notifier, notification) for notifier in targets)
        )
        outcome = dict(zip((n.name for n in targets), results))
        self._log_send_results(outcome, notification)
        return outcome

    async def _send_to_notifier(self, notifier: BaseNotifier, notification: Notification) -> bool:
        try:
            return bool(await notifier.send(notification))
        except Exception as e:
            self.logger.error(f"通知器 {notifier.name} 发送失败: {e}")
            return False

    def _log_send_results(self, outcome: Dict[str, bool], notification: Notification):
        succeeded = [name for name, ok in outcome.items() if ok]
        failed = [name for name, ok in outcome.items() if not ok]
        self.sent_count += len(succeeded)
        self.failed_count += len(failed)

        if succeeded:
            self.logger.info(
                f"通知发送成功 {len(succeeded)}/{len(outcome)} 个通知器 "
                f"(类别: {notification.kind.value}, 服务: {notification.service_id})"
            )
        if failed:
            self.logger.warning(
                f"以下通知器发送失败: {', '.join(failed)} (服务: {notification.service_id})"
            )

    def get_notifier_names(self) -> List[str]:
        return [notifier.name for notifier in self.notifiers]

    def get_stats(self) -> Dict[str, Any]:
        return {
            'notifier_count': len(self.notifiers),
            'notifier_names': self.get_notifier_names(),
            'sent_count': self.sent_count,
            'failed_count': self.failed_count
        }
