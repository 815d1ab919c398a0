"""SLO 监控

按独立的周期读取证据存储，重算所有启用的 SLO，
记录状态历史并在违约、进入高风险和恢复时发出提醒。
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional

from ..alerts.manager import NotificationManager
from ..models.alert import AlertPriority, Notification, NotificationKind
from ..models.slo import (
    WINDOW_MINUTES, SLOAlert, SLOAlertSeverity, SLOAlertType, SLODefinition, SLOStatus,
    ViolationRisk
)
from ..slo.calculator import SLOCalculator
from ..slo.repository import SLORepository
from ..storage.evidence import BaseEvidenceStore

_HIGH_RISKS = (ViolationRisk.HIGH, ViolationRisk.CRITICAL)

_ALERT_PRIORITY = {
    SLOAlertSeverity.CRITICAL: AlertPriority.CRITICAL,
    SLOAlertSeverity.WARNING: AlertPriority.HIGH,
    SLOAlertSeverity.INFO: AlertPriority.LOW,
}


class SLOMonitor:
    """SLO 监控器"""

    def __init__(self, calculator: SLOCalculator, slo_repository: SLORepository,
                 evidence_store: BaseEvidenceStore,
                 notification_manager: Optional[NotificationManager] = None,
                 service_names: Optional[Dict[str, str]] = None,
                 evidence_retention_days: Optional[float] = 90,
                 max_alerts: int = 1000):
        """
        Args:
            calculator: SLO 计算器
            slo_repository: SLO 定义和状态存储
            evidence_store: 证据存储
            notification_manager: 通知管理器，为None时只记录日志
            service_names: 服务ID到名称的映射，用于展示
            evidence_retention_days: 证据保留天数，每天清理一次更早的证据；为None时不清理
            max_alerts: 内存中保留的最近提醒数量
        """
        self.calculator = calculator
        self.repository = slo_repository
        self.evidence_store = evidence_store
        self.notification_manager = notification_manager
        self.service_names = dict(service_names or {})
        self.alerts: Deque[SLOAlert] = deque(maxlen=max_alerts)
        self.evidence_retention_days = evidence_retention_days
        self.last_pruned: Optional[datetime] = None
        self.is_running = False
        self.evaluation_count = 0
        self.logger = logging.getLogger(__name__)

    def evaluate(self, definition: SLODefinition, now: datetime) -> SLOStatus:
        """计算单个 SLO 在 now 时刻的状态"""
        since = now - timedelta(minutes=WINDOW_MINUTES[definition.window])
        evidence = self.evidence_store.query_evidence(definition.service_id, since, now)
        return self.calculator.calculate_status(
            definition, evidence, as_of=now,
            service_name=self.service_names.get(definition.service_id, '')
        )

    async def evaluate_all(self, now: Optional[datetime] = None) -> List[SLOStatus]:
        """
        评估所有启用的 SLO

        单个 SLO 计算失败只记录日志，不影响其他 SLO。

        Args:
            now: 评估时间，为None时取当前时间

        Returns:
            本轮计算得到的状态列表
        """
        now = now or datetime.now()
        statuses: List[SLOStatus] = []
        loop = asyncio.get_running_loop()

        for definition in self.repository.find_enabled():
            try:
                # 文件证据的读取和计算放到线程池，不阻塞探测
                status = await loop.run_in_executor(None, self.evaluate, definition, now)
            except Exception as e:
                self.logger.error(f"计算 SLO {definition.id} 失败: {e}")
                continue

            previous = self.repository.get_latest_status(definition.id)
            self.repository.append_status(status)
            statuses.append(status)

            for alert in self.build_alerts(previous, status):
                self.alerts.append(alert)
                await self._notify(alert, status)

        await self._prune_evidence(now)
        self.evaluation_count += 1
        if statuses:
            stats = self.calculator.calculate_aggregated_stats(statuses)
            self.logger.info(
                f"SLO 评估完成: {stats['compliant_slos']}/{stats['total_slos']} 达标, "
                f"高风险 {stats['at_risk']} 个"
            )
        return statuses

    async def _prune_evidence(self, now: datetime) -> None:
        """每天清理一次超出保留期的证据，失败只记录日志"""
        if self.evidence_retention_days is None:
            return
        if self.last_pruned is not None and now - self.last_pruned < timedelta(days=1):
            return

        self.last_pruned = now
        cutoff = now - timedelta(days=self.evidence_retention_days)
        loop = asyncio.get_running_loop()
        try:
            removed = await loop.run_in_executor(None, self.evidence_store.prune, cutoff)
        except Exception as e:
            self.logger.error(f"清理过期证据失败: {e}")
            return
        self.logger.debug(f"清理 {cutoff.isoformat()} 之前的证据 {removed} 条")

    @staticmethod
    def build_alerts(previous: Optional[SLOStatus], current: SLOStatus) -> List[SLOAlert]:
        """
        比较前后两次状态生成提醒

        - 由达标变为不达标（或首次评估即不达标）: violation
        - 仍达标但风险进入 high/critical: risk
        - 由不达标恢复为达标: recovery
        """
        alerts: List[SLOAlert] = []
        was_compliant = previous is None or previous.compliance
        details = {
            'current_value': current.current_value,
            'target': current.target,
            'error_budget_used_percent': current.error_budget_used_percent,
            'burn_rate': current.burn_rate,
            'violation_risk': current.violation_risk.value
        }

        if not current.compliance and was_compliant:
            alerts.append(SLOAlert(
                slo_id=current.slo_id,
                type=SLOAlertType.VIOLATION,
                severity=SLOAlertSeverity.CRITICAL,
                message=(f"SLO {current.slo_name} 未达标: 当前 {current.current_value}% "
                         f"低于目标 {current.target}%"),
                timestamp=current.calculated_at,
                details=details
            ))
        elif current.compliance and previous is not None and not previous.compliance:
            alerts.append(SLOAlert(
                slo_id=current.slo_id,
                type=SLOAlertType.RECOVERY,
                severity=SLOAlertSeverity.INFO,
                message=f"SLO {current.slo_name} 已恢复达标: 当前 {current.current_value}%",
                timestamp=current.calculated_at,
                details=details
            ))

        previous_high = previous is not None and previous.violation_risk in _HIGH_RISKS
        if current.compliance and current.violation_risk in _HIGH_RISKS and not previous_high:
            alerts.append(SLOAlert(
                slo_id=current.slo_id,
                type=SLOAlertType.RISK,
                severity=SLOAlertSeverity.WARNING,
                message=(f"SLO {current.slo_name} 违约风险 {current.violation_risk.value}: "
                         f"错误预算已用 {current.error_budget_used_percent}%, "
                         f"燃烧率 {current.burn_rate}"),
                timestamp=current.calculated_at,
                details=details
            ))

        return alerts

    async def _notify(self, alert: SLOAlert, status: SLOStatus) -> None:
        self.logger.warning(f"SLO 提醒 [{alert.type.value}] {alert.message}")
        if self.notification_manager is None:
            return
        notification = Notification(
            kind=NotificationKind.SLO,
            title=f"SLO {alert.type.value}: {status.slo_name}",
            message=alert.message,
            service_id=status.service_id,
            service_name=status.service_name,
            priority=_ALERT_PRIORITY[alert.severity],
            timestamp=alert.timestamp,
            data=dict(alert.details, slo_id=alert.slo_id)
        )
        await self.notification_manager.dispatch(notification)

    async def run(self, interval: float) -> None:
        """按固定周期评估，直到调用 stop 或任务被取消"""
        if self.is_running:
            self.logger.warning("SLO 监控已经在运行")
            return

        self.is_running = True
        self.logger.info(f"启动 SLO 监控，评估周期 {interval} 秒")
        try:
            while self.is_running:
                try:
                    await self.evaluate_all()
                except Exception as e:
                    self.logger.error(f"SLO 评估循环异常: {e}")
                await asyncio.sleep(interval)
        finally:
            self.is_running = False
            self.logger.info("SLO 监控已停止")

    def stop(self) -> None:
        self.is_running = False

    def get_recent_alerts(self, limit: int = 50) -> List[SLOAlert]:
        return list(reversed(self.alerts))[:limit]

    def get_current_statuses(self) -> List[SLOStatus]:
        """每个 SLO 最近一次的状态"""
        statuses = []
        for definition in self.repository.find_all():
            status = self.repository.get_latest_status(definition.id)
            if status is not None:
                statuses.append(status)
        return statuses
