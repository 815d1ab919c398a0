"""探测器基类"""

from abc import ABC, abstractmethod

from ..models.health_check import CheckResult
from ..models.service import ServiceDefinition
from ..utils.log_manager import get_logger


class BaseProber(ABC):
    """探测器抽象基类

    探测器只负责对单个服务执行一次检查并返回结构化结果，
    不感知调度和告警。
    """

    def __init__(self, default_timeout_ms: int = 5000):
        """
        初始化探测器

        Args:
            default_timeout_ms: 服务未配置超时时使用的默认超时（毫秒）
        """
        self.default_timeout_ms = default_timeout_ms
        self.prober_type = self.__class__.__name__.replace('Prober', '').lower()
        self.logger = get_logger(f'prober.{self.prober_type}')

    @abstractmethod
    async def probe(self, definition: ServiceDefinition) -> CheckResult:
        """
        执行一次探测

        所有失败情况都编码在返回结果中，不抛出异常。

        Args:
            definition: 服务定义

        Returns:
            CheckResult: 探测结果
        """

    def get_timeout_ms(self, definition: ServiceDefinition) -> int:
        """
        获取服务的探测超时

        Returns:
            int: 超时时间（毫秒）
        """
        health_check = definition.health_check
        if health_check and health_check.timeout_ms:
            return health_check.timeout_ms
        return self.default_timeout_ms
