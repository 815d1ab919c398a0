"""SLO 相关的数据模型"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional


class SLOWindow(str, Enum):
    """SLO 评估窗口"""
    ONE_HOUR = '1h'
    ONE_DAY = '24h'
    SEVEN_DAYS = '7d'
    THIRTY_DAYS = '30d'
    NINETY_DAYS = '90d'


WINDOW_MINUTES = {
    SLOWindow.ONE_HOUR: 60,
    SLOWindow.ONE_DAY: 1440,
    SLOWindow.SEVEN_DAYS: 10080,
    SLOWindow.THIRTY_DAYS: 43200,
    SLOWindow.NINETY_DAYS: 129600,
}


class IndicatorType(str, Enum):
    """SLI 指标类型"""
    AVAILABILITY = 'availability'
    LATENCY = 'latency'
    ERROR_RATE = 'errorRate'


class ViolationRisk(str, Enum):
    """违约风险等级"""
    NONE = 'none'
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'


class SLOAlertType(str, Enum):
    VIOLATION = 'violation'
    RISK = 'risk'
    RECOVERY = 'recovery'


class SLOAlertSeverity(str, Enum):
    INFO = 'info'
    WARNING = 'warning'
    CRITICAL = 'critical'


@dataclass(frozen=True)
class SLODefinition:
    """SLO 定义"""
    id: str
    service_id: str
    name: str
    target: float
    window: SLOWindow = SLOWindow.THIRTY_DAYS
    indicator: IndicatorType = IndicatorType.AVAILABILITY
    threshold: Optional[float] = None
    description: str = ''
    enabled: bool = True


@dataclass(frozen=True)
class TimeWindow:
    """具体的时间窗口"""
    start: datetime
    end: datetime
    total_minutes: int


@dataclass
class SLOStatus:
    """SLO 评估快照，每次评估全量重算"""
    slo_id: str
    slo_name: str
    service_id: str
    current_value: float
    target: float
    compliance: bool
    error_budget_total: float
    error_budget_used: float
    error_budget_remaining: float
    error_budget_used_percent: float
    burn_rate: float
    violation_risk: ViolationRisk
    window: SLOWindow
    indicator: IndicatorType
    calculated_at: datetime
    service_name: str = ''
    evidence_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'slo_id': self.slo_id,
            'slo_name': self.slo_name,
            'service_id': self.service_id,
            'service_name': self.service_name,
            'current_value': self.current_value,
            'target': self.target,
            'compliance': self.compliance,
            'error_budget_total': self.error_budget_total,
            'error_budget_used': self.error_budget_used,
            'error_budget_remaining': self.error_budget_remaining,
            'error_budget_used_percent': self.error_budget_used_percent,
            'burn_rate': self.burn_rate,
            'violation_risk': self.violation_risk.value,
            'window': self.window.value,
            'indicator': self.indicator.value,
            'evidence_count': self.evidence_count,
            'calculated_at': self.calculated_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SLOStatus':
        return cls(
            slo_id=data['slo_id'],
            slo_name=data['slo_name'],
            service_id=data['service_id'],
            service_name=data.get('service_name', ''),
            current_value=data['current_value'],
            target=data['target'],
            compliance=data['compliance'],
            error_budget_total=data['error_budget_total'],
            error_budget_used=data['error_budget_used'],
            error_budget_remaining=data['error_budget_remaining'],
            error_budget_used_percent=data['error_budget_used_percent'],
            burn_rate=data['burn_rate'],
            violation_risk=ViolationRisk(data['violation_risk']),
            window=SLOWindow(data['window']),
            indicator=IndicatorType(data['indicator']),
            evidence_count=data.get('evidence_count', 0),
            calculated_at=datetime.fromisoformat(data['calculated_at'])
        )


@dataclass
class SLOAlert:
    """SLO 违约、风险或恢复提醒"""
    slo_id: str
    type: SLOAlertType
    severity: SLOAlertSeverity
    message: str
    timestamp: datetime
    details: Dict[str, Any] = field(default_factory=dict)
