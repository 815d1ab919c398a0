"""告警系统集成器

连接调度器、告警引擎和通知管理器：
检查结果先交给告警引擎决策，需要发送的告警经过滤器后投递，
并为故障中的服务维护升级定时器。
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Any

from .engine import AlertingEngine
from .escalation import EscalationScheduler
from .manager import NotificationManager
from ..models.alert import (
    AlertDecision, AlertPriority, AlertRecord, AlertType, EscalationDecision,
    Notification, NotificationKind
)
from ..models.health_check import CheckResult
from ..models.service import AlertPolicy, EscalationPolicy, ServiceDefinition

AlertFilter = Callable[[AlertRecord], bool]

_ALERT_TITLES = {
    AlertType.DOWN: '服务不可用',
    AlertType.DEGRADED: '服务性能下降',
    AlertType.TIMEOUT: '服务请求超时',
    AlertType.RECOVERED: '服务已恢复',
}


class AlertIntegrator:
    """告警系统集成器"""

    def __init__(self, engine: AlertingEngine, notification_manager: NotificationManager):
        """初始化告警集成器

        Args:
            engine: 告警引擎
            notification_manager: 通知管理器
        """
        self.engine = engine
        self.notification_manager = notification_manager
        self.escalations = EscalationScheduler(engine, self._send_escalation)
        self.policies: Dict[str, AlertPolicy] = {}
        self.alert_filters: List[AlertFilter] = []
        self.logger = logging.getLogger(__name__)

    def update_services(self, definitions: Iterable[ServiceDefinition]) -> None:
        """更新服务告警策略"""
        self.policies = {
            definition.id: definition.alerts or AlertPolicy()
            for definition in definitions
        }

    async def process_check_result(self, result: CheckResult) -> AlertDecision:
        """处理检查结果

        Args:
            result: 检查结果

        Returns:
            告警引擎给出的决策
        """
        policy = self.policies.get(result.service_id)
        decision = self.engine.evaluate(result, policy)

        if result.success:
            self.escalations.cancel(result.service_id)
        elif policy is not None and policy.enabled and policy.escalation is not None:
            self.escalations.arm(result.service_id, policy.escalation)

        if decision.should_send and decision.alert_record is not None:
            await self._deliver_alert(decision.alert_record, policy)

        return decision

    async def _deliver_alert(self, record: AlertRecord, policy: Optional[AlertPolicy]) -> bool:
        if not self._should_alert(record):
            record.metadata['filtered'] = True
            self.logger.debug(f"告警被过滤器阻止: {record.service_id}")
            return False

        notification = self.build_alert_notification(record, policy.recipients if policy else [])
        outcome = await self.notification_manager.dispatch(notification)
        if any(outcome.values()):
            self.engine.mark_alert_sent(record.id, record.service_id)
            return True

        self.logger.warning(f"告警 {record.id} 未能成功投递到任何通知器")
        return False

    @staticmethod
    def build_alert_notification(record: AlertRecord, recipients: List[str]) -> Notification:
        result = record.check_result
        name = record.service_name or record.service_id
        title = f"[{record.priority.value.upper()}] {_ALERT_TITLES[record.type]}: {name}"
        return Notification(
            kind=NotificationKind.ALERT,
            title=title,
            message=result.message,
            service_id=record.service_id,
            service_name=record.service_name,
            priority=record.priority,
            recipients=list(recipients),
            timestamp=record.created_at,
            data={
                'alert_id': record.id,
                'alert_type': record.type.value,
                'status': result.status.value,
                'url': result.url,
                'response_time_ms': result.response_time_ms,
                'status_code': result.status_code,
                'error': result.error,
                'validation_errors': list(result.validation_errors),
                'retry_attempts': record.metadata.get('retry_attempts'),
                'downtime_minutes': record.metadata.get('downtime_minutes'),
            }
        )

    async def _send_escalation(self, service_id: str, policy: EscalationPolicy,
                               decision: EscalationDecision) -> None:
        record = self.engine.mark_alert_escalated(
            service_id, policy.notify_to, decision.downtime_minutes
        )
        name = record.service_name if record and record.service_name else service_id
        notification = Notification(
            kind=NotificationKind.ESCALATION,
            title=f"[ESCALATION] 服务持续故障: {name}",
            message=f"服务 {name} 已持续故障 {decision.downtime_minutes:.0f} 分钟，告警已升级",
            service_id=service_id,
            service_name=record.service_name if record else '',
            priority=AlertPriority.CRITICAL,
            recipients=list(policy.notify_to),
            data={
                'alert_id': record.id if record else None,
                'downtime_minutes': decision.downtime_minutes,
                'after_minutes': policy.after_minutes
            }
        )
        await self.notification_manager.dispatch(notification)

    def _should_alert(self, record: AlertRecord) -> bool:
        for filter_func in self.alert_filters:
            try:
                if not filter_func(record):
                    return False
            except Exception as e:
                # 过滤器失败时默认允许告警
                self.logger.error(f"告警过滤器执行失败: {e}")
        return True

    def add_alert_filter(self, filter_func: AlertFilter):
        """添加告警过滤器，返回False表示阻止告警"""
        self.alert_filters.append(filter_func)

    def remove_alert_filter(self, filter_func: AlertFilter) -> bool:
        try:
            self.alert_filters.remove(filter_func)
            return True
        except ValueError:
            return False

    @staticmethod
    def create_service_filter(allowed_services: List[str]) -> AlertFilter:
        """只允许指定服务告警"""
        def service_filter(record: AlertRecord) -> bool:
            return record.service_id in allowed_services

        return service_filter

    @staticmethod
    def create_time_filter(quiet_hours: List[Tuple[int, int]]) -> AlertFilter:
        """创建静默时段过滤器

        Args:
            quiet_hours: 静默时间段列表，格式为[(start_hour, end_hour), ...]，支持跨天

        Returns:
            过滤器函数，critical 告警不受静默时段限制
        """
        def time_filter(record: AlertRecord) -> bool:
            if record.priority == AlertPriority.CRITICAL:
                return True
            hour = record.created_at.hour
            for start_hour, end_hour in quiet_hours:
                if start_hour <= end_hour:
                    if start_hour <= hour < end_hour:
                        return False
                elif hour >= start_hour or hour < end_hour:
                    return False
            return True

        return time_filter

    async def test_alert_system(self, service_id: str = 'test-service') -> bool:
        """发送一条测试通知，至少一个通知器成功即视为通过"""
        notification = Notification(
            kind=NotificationKind.TEST,
            title='告警系统测试',
            message='这是一条测试通知',
            service_id=service_id,
            service_name=service_id,
            priority=AlertPriority.LOW,
            timestamp=datetime.now()
        )
        outcome = await self.notification_manager.dispatch(notification)
        success = any(outcome.values())
        self.logger.info(f"告警系统测试完成: {'成功' if success else '失败'}")
        return success

    async def shutdown(self) -> None:
        await self.escalations.cancel_all()

    def get_alert_stats(self) -> Dict[str, Any]:
        stats = self.engine.get_stats()
        stats.update({
            'filter_count': len(self.alert_filters),
            'armed_escalations': len(self.escalations.timers),
            'notifications': self.notification_manager.get_stats()
        })
        return stats
