"""事件单管理器

负责事件单的创建、关联、更新和自动解决，并维护时间线和聚合统计。
状态按 new -> investigating -> in_progress -> resolved -> closed 单向流转，
每个服务同一时间最多一个活动事件单。
"""

import logging
from datetime import datetime
from typing import List, Optional

from .repository import BaseIncidentRepository
from ..alerts.manager import NotificationManager
from ..models.alert import AlertPriority, Notification, NotificationKind
from ..models.health_check import CheckResult
from ..models.incident import (
    INCIDENT_STATUS_ORDER, Incident, IncidentEvent, IncidentEventType,
    IncidentSeverity, IncidentStatistics, IncidentStatus
)
from ..utils.exceptions import (
    IncidentConflictError, IncidentNotFoundError, InvalidIncidentTransitionError
)

SYSTEM_RESOLUTION = '服务已恢复，系统自动解决'

_SEVERITY_PRIORITY = {
    IncidentSeverity.CRITICAL: AlertPriority.CRITICAL,
    IncidentSeverity.HIGH: AlertPriority.HIGH,
    IncidentSeverity.MEDIUM: AlertPriority.MEDIUM,
    IncidentSeverity.LOW: AlertPriority.LOW,
}


class IncidentManager:
    """事件单管理器"""

    def __init__(self, repository: BaseIncidentRepository,
                 notification_manager: Optional[NotificationManager] = None,
                 slow_response_threshold_ms: float = 3000):
        """
        Args:
            repository: 事件单存储
            notification_manager: 通知管理器，为None时不发送事件单通知
            slow_response_threshold_ms: 判定慢响应的阈值（毫秒）
        """
        self.repository = repository
        self.notification_manager = notification_manager
        self.slow_response_threshold_ms = slow_response_threshold_ms
        self.logger = logging.getLogger(__name__)

    def create_incident(self, service_id: str, severity: IncidentSeverity, description: str,
                        service_name: str = '', now: Optional[datetime] = None) -> Incident:
        """
        创建事件单

        Raises:
            IncidentConflictError: 服务已存在活动事件单
        """
        active = self.repository.find_active_by_service(service_id)
        if active is not None:
            raise IncidentConflictError(service_id, active.id)

        now = now or datetime.now()
        incident = Incident(
            service_id=service_id,
            service_name=service_name,
            severity=severity,
            description=description,
            created_at=now,
            updated_at=now,
            timeline=[IncidentEvent(IncidentEventType.CREATED, '监控系统自动创建事件单', now)]
        )
        self.repository.save(incident)
        self.logger.warning(
            f"为服务 {service_id} 创建事件单 {incident.id} (严重程度: {severity.value})"
        )
        return incident

    def link_check_to_incident(self, incident_id: str, result: CheckResult) -> Incident:
        """
        将新的失败检查关联到已有事件单

        Raises:
            IncidentNotFoundError: 事件单不存在
        """
        incident = self._require(incident_id)
        incident.affected_checks += 1
        incident.updated_at = result.timestamp
        incident.timeline.append(IncidentEvent(
            IncidentEventType.FAILED_CHECK,
            f"检查再次失败: {result.error or result.message}",
            result.timestamp
        ))
        self.repository.save(incident)
        return incident

    def update_incident(self, incident_id: str, status: Optional[IncidentStatus] = None,
                        assigned_to: Optional[str] = None, root_cause: Optional[str] = None,
                        resolution: Optional[str] = None, notes: Optional[str] = None,
                        now: Optional[datetime] = None) -> Incident:
        """
        更新事件单

        Args:
            incident_id: 事件单ID
            status: 新状态，只能向后流转
            assigned_to: 负责人
            root_cause: 根因
            resolution: 解决方案
            notes: 附加说明，写入时间线
            now: 更新时间

        Returns:
            更新后的事件单

        Raises:
            IncidentNotFoundError: 事件单不存在
            InvalidIncidentTransitionError: 状态回退或关闭后再变更
        """
        incident = self._require(incident_id)
        now = now or datetime.now()
        changes: List[str] = []
        event_type = IncidentEventType.UPDATE

        if status is not None and status != incident.status:
            status = IncidentStatus(status)
            if INCIDENT_STATUS_ORDER[status] < INCIDENT_STATUS_ORDER[incident.status]:
                raise InvalidIncidentTransitionError(
                    incident_id, incident.status.value, status.value
                )
            changes.append(f"状态 {incident.status.value} -> {status.value}")
            incident.status = status
            event_type = IncidentEventType.STATUS_CHANGE

            if status in (IncidentStatus.RESOLVED, IncidentStatus.CLOSED) and incident.resolved_at is None:
                incident.resolved_at = now
                incident.resolution_time_minutes = (now - incident.created_at).total_seconds() / 60
                event_type = IncidentEventType.RESOLVED
            if status == IncidentStatus.CLOSED:
                incident.closed_at = now
                event_type = IncidentEventType.CLOSED

        if assigned_to is not None:
            incident.metadata.assigned_to = assigned_to
            changes.append(f"负责人: {assigned_to}")
        if root_cause is not None:
            incident.metadata.root_cause = root_cause
            changes.append(f"根因: {root_cause}")
        if resolution is not None:
            incident.metadata.resolution = resolution
            changes.append(f"解决方案: {resolution}")
        if notes:
            changes.append(f"备注: {notes}")

        if changes:
            incident.updated_at = now
            incident.timeline.append(IncidentEvent(event_type, '；'.join(changes), now))
            self.repository.save(incident)
            self.logger.info(f"事件单 {incident_id} 已更新: {'；'.join(changes)}")

        return incident

    def auto_resolve_incident(self, service_id: str,
                              now: Optional[datetime] = None) -> Optional[Incident]:
        """
        服务恢复时自动解决活动事件单

        Returns:
            被解决的事件单，没有活动事件单时返回None
        """
        active = self.repository.find_active_by_service(service_id)
        if active is None:
            return None

        incident = self.update_incident(
            active.id,
            status=IncidentStatus.RESOLVED,
            resolution=SYSTEM_RESOLUTION,
            now=now
        )
        self.logger.info(
            f"服务 {service_id} 已恢复，事件单 {incident.id} 自动解决 "
            f"(耗时 {incident.resolution_time_minutes:.1f} 分钟)"
        )
        return incident

    def determine_severity(self, result: CheckResult) -> Optional[IncidentSeverity]:
        """
        根据检查结果确定严重程度

        超时、DNS 和连接失败为 critical，5xx 为 high，其他失败为 medium，
        成功但响应慢为 low。

        Returns:
            严重程度，成功且响应正常的检查返回None
        """
        if not result.success:
            if result.is_connection_failure:
                return IncidentSeverity.CRITICAL
            if result.status_code is not None and result.status_code >= 500:
                return IncidentSeverity.HIGH
            return IncidentSeverity.MEDIUM
        if self.is_slow(result):
            return IncidentSeverity.LOW
        return None

    def is_slow(self, result: CheckResult) -> bool:
        return result.response_time_ms > self.slow_response_threshold_ms

    async def handle_check_result(self, result: CheckResult) -> Optional[Incident]:
        """
        处理调度器分发的检查结果

        失败时关联到活动事件单或新建事件单，成功时自动解决活动事件单。
        成功的检查不会创建事件单。

        Returns:
            受影响的事件单
        """
        if result.success:
            if self.is_slow(result):
                self.logger.info(
                    f"服务 {result.service_id} 检查成功但响应缓慢: {result.response_time_ms:.0f}ms"
                )
            incident = self.auto_resolve_incident(result.service_id, now=result.timestamp)
            if incident is not None:
                await self._notify(incident, f"事件单已解决: {incident.service_name or incident.service_id}")
            return incident

        active = self.repository.find_active_by_service(result.service_id)
        if active is not None:
            return self.link_check_to_incident(active.id, result)

        incident = self.create_incident(
            result.service_id,
            self.determine_severity(result),
            result.message,
            service_name=result.service_name,
            now=result.timestamp
        )
        await self._notify(incident, f"新事件单: {incident.service_name or incident.service_id}")
        return incident

    async def _notify(self, incident: Incident, title: str) -> None:
        if self.notification_manager is None:
            return
        notification = Notification(
            kind=NotificationKind.INCIDENT,
            title=f"[{incident.severity.value.upper()}] {title}",
            message=incident.description,
            service_id=incident.service_id,
            service_name=incident.service_name,
            priority=_SEVERITY_PRIORITY[incident.severity],
            timestamp=incident.updated_at,
            data={
                'incident_id': incident.id,
                'status': incident.status.value,
                'affected_checks': incident.affected_checks,
                'resolution_time_minutes': incident.resolution_time_minutes
            }
        )
        await self.notification_manager.dispatch(notification)

    def _require(self, incident_id: str) -> Incident:
        incident = self.repository.get(incident_id)
        if incident is None:
            raise IncidentNotFoundError(incident_id)
        return incident

    def get_incident(self, incident_id: str) -> Optional[Incident]:
        return self.repository.get(incident_id)

    def find_active_by_service(self, service_id: str) -> Optional[Incident]:
        return self.repository.find_active_by_service(service_id)

    def get_active_incidents(self) -> List[Incident]:
        return [incident for incident in self.repository.find_all() if incident.is_active]

    def get_incidents_by_service(self, service_id: str) -> List[Incident]:
        return self.repository.find_by_service(service_id)

    def get_all_incidents(self) -> List[Incident]:
        return self.repository.find_all()

    def get_statistics(self) -> IncidentStatistics:
        """聚合统计，平均解决时间只计算已解决的事件单"""
        incidents = self.repository.find_all()
        stats = IncidentStatistics(
            total=len(incidents),
            active=sum(1 for i in incidents if i.is_active),
            by_status={status.value: 0 for status in IncidentStatus},
            by_severity={severity.value: 0 for severity in IncidentSeverity}
        )
        for incident in incidents:
            stats.by_status[incident.status.value] += 1
            stats.by_severity[incident.severity.value] += 1

        resolution_times = [
            i.resolution_time_minutes for i in incidents
            if i.resolved_at is not None and i.resolution_time_minutes is not None
        ]
        if resolution_times:
            stats.mean_time_to_resolution = sum(resolution_times) / len(resolution_times)
        return stats
