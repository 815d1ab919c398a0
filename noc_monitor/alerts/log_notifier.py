"""日志通知器，把通知写入日志"""

import logging
from typing import Dict, Any, Optional

from .base import BaseNotifier
from ..models.alert import AlertPriority, Notification
from ..utils.log_manager import get_logger

_PRIORITY_LEVELS = {
    AlertPriority.LOW: logging.INFO,
    AlertPriority.MEDIUM: logging.WARNING,
    AlertPriority.HIGH: logging.ERROR,
    AlertPriority.CRITICAL: logging.CRITICAL,
}


class LogNotifier(BaseNotifier):
    """日志通知器，按优先级选择日志级别"""

    def __init__(self, name: str = 'log', config: Optional[Dict[str, Any]] = None):
        super().__init__(name, config or {})
        self.logger = get_logger(f'notifier.log.{self.name}')

    def validate_config(self) -> bool:
        return True

    async def send(self, notification: Notification) -> bool:
        level = _PRIORITY_LEVELS.get(notification.priority, logging.INFO)
        self.logger.log(
            level,
            f"[{notification.kind.value}] {notification.title} - {notification.message} "
            f"(服务: {notification.service_id or '-'}, 接收人: {','.join(notification.recipients) or '-'})"
        )
        return True
