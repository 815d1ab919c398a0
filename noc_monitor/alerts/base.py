"""通知器基类"""

from abc import ABC, abstractmethod
from typing import Dict, Any

from ..models.alert import Notification


class BaseNotifier(ABC):
    """通知器抽象基类

    通知器只负责把完整的通知负载投递出去，不关心告警决策。
    """

    def __init__(self, name: str, config: Dict[str, Any]):
        """
        初始化通知器

        Args:
            name: 通知器名称
            config: 通知器配置参数
        """
        self.name = name
        self.config = config
        self.notifier_type = self.__class__.__name__.replace('Notifier', '').lower()

    @abstractmethod
    async def send(self, notification: Notification) -> bool:
        """
        发送通知

        Args:
            notification: 通知负载

        Returns:
            bool: 发送是否成功
        """

    @abstractmethod
    def validate_config(self) -> bool:
        """
        验证配置参数是否有效

        Returns:
            bool: 配置是否有效
        """

    def accepts(self, notification: Notification) -> bool:
        """按配置的 kinds 过滤通知类别，未配置时接收全部"""
        kinds = self.config.get('kinds')
        return not kinds or notification.kind.value in kinds

    def get_timeout(self) -> int:
        """
        获取超时时间配置

        Returns:
            int: 超时时间（秒）
        """
        return self.config.get('timeout', 30)
