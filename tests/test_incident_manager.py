"""事件单管理测试"""

import os
import tempfile
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from noc_monitor.incidents.manager import SYSTEM_RESOLUTION, IncidentManager
from noc_monitor.incidents.repository import IncidentRepository
from noc_monitor.models.alert import NotificationKind
from noc_monitor.models.health_check import (
    CheckResult, ERROR_TYPE_DNS, ERROR_TYPE_TIMEOUT
)
from noc_monitor.models.incident import (
    IncidentEventType, IncidentSeverity, IncidentStatus
)
from noc_monitor.models.service import ServiceStatus
from noc_monitor.utils.exceptions import (
    IncidentConflictError, IncidentNotFoundError, InvalidIncidentTransitionError
)

BASE_TIME = datetime(2024, 5, 1, 3, 0, 0)


def make_result(success: bool, minutes: float = 0, service_id: str = 'api',
                status_code: int = None, error_type: str = None,
                response_time: float = 100.0) -> CheckResult:
    return CheckResult(
        service_id=service_id,
        service_name='API 服务',
        success=success,
        status=ServiceStatus.UP if success else ServiceStatus.DOWN,
        response_time_ms=response_time,
        message='正常' if success else '服务不可用',
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        status_code=status_code,
        error=None if success else '连接失败',
        error_type=error_type
    )


class TestIncidentManager:
    """事件单管理器测试类"""

    def setup_method(self):
        self.repository = IncidentRepository()
        self.notifications = MagicMock()
        self.notifications.dispatch = AsyncMock(return_value={'console': True})
        self.manager = IncidentManager(self.repository, self.notifications)

    @pytest.mark.asyncio
    async def test_failures_link_to_single_incident(self):
        """测试同一服务连续失败只产生一个活动事件单"""
        first = await self.manager.handle_check_result(make_result(False, 0, status_code=503))
        second = await self.manager.handle_check_result(make_result(False, 1, status_code=503))

        assert first.id == second.id
        assert second.affected_checks == 2
        assert second.timeline[-1].type == IncidentEventType.FAILED_CHECK
        assert len(self.manager.get_active_incidents()) == 1
        assert self.notifications.dispatch.await_count == 1

    @pytest.mark.asyncio
    async def test_success_never_creates_incident(self):
        assert await self.manager.handle_check_result(make_result(True)) is None
        assert self.manager.get_all_incidents() == []

    @pytest.mark.asyncio
    async def test_recovery_auto_resolves(self):
        """测试恢复后自动解决"""
        created = await self.manager.handle_check_result(make_result(False, 0))
        resolved = await self.manager.handle_check_result(make_result(True, 12))

        assert resolved.id == created.id
        assert resolved.status == IncidentStatus.RESOLVED
        assert resolved.resolved_at == BASE_TIME + timedelta(minutes=12)
        assert resolved.resolution_time_minutes == pytest.approx(12.0)
        assert resolved.metadata.resolution == SYSTEM_RESOLUTION
        assert self.manager.find_active_by_service('api') is None

        notification = self.notifications.dispatch.await_args.args[0]
        assert notification.kind == NotificationKind.INCIDENT
        assert notification.data['status'] == 'resolved'

    @pytest.mark.asyncio
    async def test_new_incident_after_resolution(self):
        await self.manager.handle_check_result(make_result(False, 0))
        await self.manager.handle_check_result(make_result(True, 5))
        await self.manager.handle_check_result(make_result(False, 10))

        assert len(self.manager.get_incidents_by_service('api')) == 2
        assert len(self.manager.get_active_incidents()) == 1

    def test_create_conflict(self):
        """测试重复创建活动事件单时报冲突"""
        incident = self.manager.create_incident('api', IncidentSeverity.HIGH, '故障')

        with pytest.raises(IncidentConflictError) as exc_info:
            self.manager.create_incident('api', IncidentSeverity.LOW, '再次故障')
        assert exc_info.value.details['incident_id'] == incident.id

    def test_forward_transitions(self):
        """测试状态单向流转"""
        incident = self.manager.create_incident('api', IncidentSeverity.HIGH, '故障', now=BASE_TIME)

        self.manager.update_incident(incident.id, status=IncidentStatus.INVESTIGATING,
                                     assigned_to='alice')
        self.manager.update_incident(incident.id, status=IncidentStatus.IN_PROGRESS,
                                     root_cause='数据库连接池耗尽')
        resolved = self.manager.update_incident(incident.id, status=IncidentStatus.RESOLVED,
                                                now=BASE_TIME + timedelta(minutes=30))
        closed = self.manager.update_incident(incident.id, status=IncidentStatus.CLOSED,
                                              now=BASE_TIME + timedelta(minutes=45))

        assert resolved.resolution_time_minutes == pytest.approx(30.0)
        assert closed.status == IncidentStatus.CLOSED
        assert closed.closed_at == BASE_TIME + timedelta(minutes=45)
        assert closed.resolution_time_minutes == pytest.approx(30.0)
        assert closed.metadata.assigned_to == 'alice'
        assert [e.type for e in closed.timeline] == [
            IncidentEventType.CREATED,
            IncidentEventType.STATUS_CHANGE,
            IncidentEventType.STATUS_CHANGE,
            IncidentEventType.RESOLVED,
            IncidentEventType.CLOSED,
        ]

    def test_skip_ahead_is_allowed(self):
        incident = self.manager.create_incident('api', IncidentSeverity.LOW, '慢响应', now=BASE_TIME)

        closed = self.manager.update_incident(incident.id, status=IncidentStatus.CLOSED,
                                              now=BASE_TIME + timedelta(minutes=10))

        assert closed.resolved_at is not None
        assert closed.closed_at is not None

    def test_backward_transition_rejected(self):
        """测试状态回退被拒绝"""
        incident = self.manager.create_incident('api', IncidentSeverity.HIGH, '故障')
        self.manager.update_incident(incident.id, status=IncidentStatus.RESOLVED)

        with pytest.raises(InvalidIncidentTransitionError):
            self.manager.update_incident(incident.id, status=IncidentStatus.INVESTIGATING)
        assert self.manager.get_incident(incident.id).status == IncidentStatus.RESOLVED

    def test_notes_only_update(self):
        incident = self.manager.create_incident('api', IncidentSeverity.HIGH, '故障')

        updated = self.manager.update_incident(incident.id, notes='已联系值班 DBA')

        assert updated.timeline[-1].type == IncidentEventType.UPDATE
        assert '已联系值班 DBA' in updated.timeline[-1].message

    def test_unknown_incident(self):
        with pytest.raises(IncidentNotFoundError):
            self.manager.update_incident('missing', status=IncidentStatus.CLOSED)
        with pytest.raises(IncidentNotFoundError):
            self.manager.link_check_to_incident('missing', make_result(False))

    def test_auto_resolve_without_active(self):
        assert self.manager.auto_resolve_incident('api') is None

    @pytest.mark.parametrize('result,expected', [
        (make_result(False, error_type=ERROR_TYPE_TIMEOUT), IncidentSeverity.CRITICAL),
        (make_result(False, error_type=ERROR_TYPE_DNS), IncidentSeverity.CRITICAL),
        (make_result(False, status_code=502), IncidentSeverity.HIGH),
        (make_result(False, status_code=404), IncidentSeverity.MEDIUM),
        (make_result(True, response_time=5000), IncidentSeverity.LOW),
        (make_result(True, response_time=50), None),
    ])
    def test_determine_severity(self, result, expected):
        """测试严重程度判定"""
        assert self.manager.determine_severity(result) == expected

    def test_is_slow(self):
        assert self.manager.is_slow(make_result(True, response_time=5000))
        assert not self.manager.is_slow(make_result(True, response_time=50))

    def test_slow_threshold_is_configurable(self):
        """测试慢响应阈值影响成功检查的严重程度"""
        manager = IncidentManager(self.repository, slow_response_threshold_ms=200)

        assert manager.determine_severity(make_result(True, response_time=250)) == IncidentSeverity.LOW
        assert manager.determine_severity(make_result(True, response_time=150)) is None
        assert self.manager.determine_severity(make_result(True, response_time=250)) is None

    @pytest.mark.asyncio
    async def test_statistics(self):
        """测试聚合统计"""
        await self.manager.handle_check_result(make_result(False, 0, service_id='a'))
        await self.manager.handle_check_result(make_result(True, 10, service_id='a'))
        await self.manager.handle_check_result(make_result(False, 0, service_id='b',
                                                           error_type=ERROR_TYPE_TIMEOUT))

        stats = self.manager.get_statistics()

        assert stats.total == 2
        assert stats.active == 1
        assert stats.by_status['resolved'] == 1
        assert stats.by_status['new'] == 1
        assert stats.by_severity['critical'] == 1
        assert stats.mean_time_to_resolution == pytest.approx(10.0)

    def test_statistics_empty(self):
        stats = self.manager.get_statistics()

        assert stats.total == 0
        assert stats.mean_time_to_resolution == 0.0


class TestIncidentRepository:
    """事件单存储测试类"""

    def test_returns_copies(self):
        """测试返回的事件单是副本"""
        repository = IncidentRepository()
        manager = IncidentManager(repository)
        incident = manager.create_incident('api', IncidentSeverity.HIGH, '故障')

        copy = repository.get(incident.id)
        copy.status = IncidentStatus.CLOSED

        assert repository.get(incident.id).status == IncidentStatus.NEW

    def test_persistence_round_trip(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, 'data', 'incidents.json')
            manager = IncidentManager(IncidentRepository(path))
            incident = manager.create_incident('api', IncidentSeverity.HIGH, '故障', now=BASE_TIME)
            manager.update_incident(incident.id, assigned_to='bob')

            reloaded = IncidentRepository(path)
            restored = reloaded.get(incident.id)

            assert restored.metadata.assigned_to == 'bob'
            assert restored.created_at == BASE_TIME
            assert reloaded.find_active_by_service('api').id == incident.id

    def test_delete(self):
        repository = IncidentRepository()
        incident = IncidentManager(repository).create_incident('api', IncidentSeverity.LOW, 'x')

        assert repository.delete(incident.id)
        assert not repository.delete(incident.id)
        assert repository.find_all() == []
