"""告警相关的数据模型"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, List

from .health_check import CheckResult
from .service import ServiceStatus


class AlertType(str, Enum):
    """告警类型"""
    DOWN = 'down'
    RECOVERED = 'recovered'
    DEGRADED = 'degraded'
    TIMEOUT = 'timeout'


class AlertPriority(str, Enum):
    """告警优先级"""
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'


class AlertStatus(str, Enum):
    """告警记录状态"""
    PENDING = 'pending'
    SENT = 'sent'
    SUPPRESSED = 'suppressed'
    ESCALATED = 'escalated'


class NotificationKind(str, Enum):
    """通知类别"""
    ALERT = 'alert'
    ESCALATION = 'escalation'
    INCIDENT = 'incident'
    SLO = 'slo'
    PATTERN = 'pattern'
    TEST = 'test'


@dataclass
class ServiceHealthState:
    """告警引擎持有的服务健康状态"""
    service_id: str
    current_status: ServiceStatus = ServiceStatus.UNKNOWN
    previous_status: Optional[ServiceStatus] = None
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    last_check: Optional[datetime] = None
    last_state_change: Optional[datetime] = None
    downtime_started: Optional[datetime] = None
    downtime_duration_minutes: Optional[float] = None
    has_active_escalation: bool = False
    is_retrying: bool = False


@dataclass
class CooldownState:
    """冷却期记忆"""
    last_alert_sent: datetime
    period_started: datetime
    alerts_in_current_period: int = 1


@dataclass
class AlertRecord:
    """告警记录，按服务追加保存"""
    service_id: str
    type: AlertType
    priority: AlertPriority
    status: AlertStatus
    check_result: CheckResult
    service_name: str = ''
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.now)
    sent_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'service_id': self.service_id,
            'service_name': self.service_name,
            'type': self.type.value,
            'priority': self.priority.value,
            'status': self.status.value,
            'created_at': self.created_at.isoformat(),
            'sent_at': self.sent_at.isoformat() if self.sent_at else None,
            'check_result': self.check_result.to_dict(),
            'metadata': dict(self.metadata)
        }


@dataclass
class AlertDecision:
    """告警决策结果"""
    should_send: bool
    reason: Optional[str] = None
    alert_record: Optional[AlertRecord] = None


@dataclass
class EscalationDecision:
    """升级判定结果"""
    needs_escalation: bool
    downtime_minutes: Optional[float] = None


@dataclass
class Notification:
    """交给通知器的完整通知负载"""
    kind: NotificationKind
    title: str
    message: str
    service_id: str = ''
    service_name: str = ''
    priority: AlertPriority = AlertPriority.MEDIUM
    recipients: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'title': self.title,
            'message': self.message,
            'service_id': self.service_id,
            'service_name': self.service_name,
            'priority': self.priority.value,
            'recipients': list(self.recipients),
            'timestamp': self.timestamp.isoformat(),
            'data': self.data
        }
