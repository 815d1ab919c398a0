"""模式检测相关的数据模型"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, List, Optional, Tuple


class PatternType(str, Enum):
    PROGRESSIVE_DEGRADATION = 'progressive_degradation'
    INTERMITTENT_FAILURES = 'intermittent_failures'
    RECURRING_DOWNTIME = 'recurring_downtime'
    CASCADE_FAILURE = 'cascade_failure'
    PERFORMANCE_SPIKE = 'performance_spike'
    RECOVERY_PATTERN = 'recovery_pattern'


class PatternSeverity(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'


DEFAULT_ENABLED_PATTERNS = [
    PatternType.PROGRESSIVE_DEGRADATION.value,
    PatternType.INTERMITTENT_FAILURES.value,
    PatternType.RECURRING_DOWNTIME.value,
]


@dataclass
class PatternDetectionConfig:
    """模式检测配置"""
    enabled: bool = True
    time_window_minutes: int = 60
    enabled_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_ENABLED_PATTERNS))
    analysis_interval: int = 300
    notify_on_detection: bool = True


@dataclass
class DetectedPattern:
    """检测到的模式"""
    type: PatternType
    severity: PatternSeverity
    service_id: str
    description: str
    confidence: float
    service_name: str = ''
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    detected_at: datetime = field(default_factory=datetime.now)
    events_analyzed: int = 0
    details: Dict[str, Any] = field(default_factory=dict)
    recommendations: List[str] = field(default_factory=list)
    notified: bool = False

    @property
    def key(self) -> Tuple[PatternType, Optional[int]]:
        """同一服务内识别同一模式的键，重复故障按小时区分"""
        return self.type, self.details.get('recurring_hour')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type.value,
            'severity': self.severity.value,
            'service_id': self.service_id,
            'service_name': self.service_name,
            'description': self.description,
            'confidence': self.confidence,
            'detected_at': self.detected_at.isoformat(),
            'events_analyzed': self.events_analyzed,
            'details': dict(self.details),
            'recommendations': list(self.recommendations),
            'notified': self.notified
        }


@dataclass
class MetricTrend:
    """响应时间趋势"""
    service_id: str
    direction: str
    change_rate: float
    current_value: float
    previous_value: float
    prediction: float
    concern_level: str
    metric: str = 'response_time'
    time_window_minutes: Optional[int] = None
