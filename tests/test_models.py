"""数据模型测试"""

import dataclasses
from datetime import datetime

import pytest

from noc_monitor.models.alert import (
    AlertPriority, AlertRecord, AlertStatus, AlertType, Notification, NotificationKind
)
from noc_monitor.models.health_check import (
    CheckResult, EvidenceEntry, EvidenceLevel, ERROR_TYPE_CONNECTION, ERROR_TYPE_DNS,
    ERROR_TYPE_TIMEOUT
)
from noc_monitor.models.incident import (
    Incident, IncidentEvent, IncidentEventType, IncidentSeverity, IncidentStatus
)
from noc_monitor.models.pattern import DetectedPattern, PatternSeverity, PatternType
from noc_monitor.models.service import ServiceDefinition, ServiceStatus

TIMESTAMP = datetime(2024, 5, 1, 9, 30, 0)


class TestCheckResult:
    """检查结果测试类"""

    def make_result(self, error_type=None):
        return CheckResult(
            service_id='api', success=False, status=ServiceStatus.DOWN,
            response_time_ms=5000.0, message='请求超时', timestamp=TIMESTAMP,
            error='timeout', error_type=error_type
        )

    def test_immutable(self):
        """测试检查结果不可变"""
        result = self.make_result()

        with pytest.raises(dataclasses.FrozenInstanceError):
            result.success = True

    def test_failure_classification(self):
        assert self.make_result(ERROR_TYPE_TIMEOUT).is_timeout
        assert self.make_result(ERROR_TYPE_DNS).is_connection_failure
        assert self.make_result(ERROR_TYPE_CONNECTION).is_connection_failure
        assert not self.make_result('client').is_connection_failure

    def test_to_dict(self):
        data = self.make_result(ERROR_TYPE_TIMEOUT).to_dict()

        assert data['status'] == 'down'
        assert data['timestamp'] == TIMESTAMP.isoformat()
        assert data['error_type'] == 'timeout'


class TestEvidenceEntry:
    """证据记录测试类"""

    def test_from_dict_defaults(self):
        """测试缺省字段的解析"""
        entry = EvidenceEntry.from_dict({
            'service_id': 'api',
            'timestamp': TIMESTAMP.isoformat(),
            'success': True
        })

        assert entry.status == ServiceStatus.UNKNOWN
        assert entry.level == EvidenceLevel.LOW
        assert entry.response_time_ms == 0.0

    def test_dict_round_trip(self):
        entry = EvidenceEntry(
            service_id='api', timestamp=TIMESTAMP, success=False, status=ServiceStatus.DOWN,
            response_time_ms=12.5, status_code=502, level=EvidenceLevel.HIGH, message='bad gateway'
        )

        assert EvidenceEntry.from_dict(entry.to_dict()) == entry


class TestServiceDefinition:

    def test_defaults(self):
        definition = ServiceDefinition(id='api', name='API', url='https://api.example.com')

        assert definition.interval == 60
        assert definition.enabled
        assert not definition.critical
        assert definition.alerts is None


class TestAlertModels:
    """告警模型测试类"""

    def test_alert_record_to_dict(self):
        result = CheckResult(service_id='api', success=False, status=ServiceStatus.DOWN,
                             response_time_ms=0, message='down', timestamp=TIMESTAMP)
        record = AlertRecord(service_id='api', type=AlertType.DOWN, priority=AlertPriority.HIGH,
                             status=AlertStatus.PENDING, check_result=result, created_at=TIMESTAMP)

        data = record.to_dict()

        assert data['type'] == 'down'
        assert data['sent_at'] is None
        assert data['check_result']['service_id'] == 'api'

    def test_notification_to_dict(self):
        notification = Notification(
            kind=NotificationKind.ESCALATION, title='升级', message='持续故障',
            priority=AlertPriority.CRITICAL, recipients=['lead@example.com'], timestamp=TIMESTAMP
        )

        data = notification.to_dict()

        assert data['kind'] == 'escalation'
        assert data['priority'] == 'critical'
        assert data['recipients'] == ['lead@example.com']


class TestIncidentModel:
    """事件单模型测试类"""

    def test_round_trip(self):
        """测试事件单序列化和反序列化"""
        incident = Incident(
            service_id='api', severity=IncidentSeverity.HIGH, description='API 不可用',
            created_at=TIMESTAMP, updated_at=TIMESTAMP,
            timeline=[IncidentEvent(IncidentEventType.CREATED, '创建', TIMESTAMP)]
        )
        incident.metadata.tags.append('core')

        restored = Incident.from_dict(incident.to_dict())

        assert restored.id == incident.id
        assert restored.status == IncidentStatus.NEW
        assert restored.timeline[0].type == IncidentEventType.CREATED
        assert restored.metadata.tags == ['core']
        assert restored.is_active

    def test_is_active(self):
        incident = Incident(service_id='api', severity=IncidentSeverity.LOW, description='x',
                            status=IncidentStatus.RESOLVED)

        assert not incident.is_active


class TestDetectedPattern:

    def test_to_dict(self):
        pattern = DetectedPattern(
            type=PatternType.INTERMITTENT_FAILURES, severity=PatternSeverity.MEDIUM,
            service_id='api', description='间歇性失败', confidence=0.8, detected_at=TIMESTAMP
        )

        data = pattern.to_dict()

        assert data['type'] == 'intermittent_failures'
        assert data['notified'] is False
