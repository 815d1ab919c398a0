"""健康检查相关的数据模型"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, List

from .service import ServiceStatus


# 传输层错误分类
ERROR_TYPE_TIMEOUT = 'timeout'
ERROR_TYPE_DNS = 'dns'
ERROR_TYPE_CONNECTION = 'connection'
ERROR_TYPE_CLIENT = 'client'


class EvidenceLevel(str, Enum):
    """证据记录级别"""
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


@dataclass(frozen=True)
class CheckResult:
    """单次探测结果，每次探测产生一个，创建后不可变"""
    service_id: str
    success: bool
    status: ServiceStatus
    response_time_ms: float
    message: str
    timestamp: datetime = field(default_factory=datetime.now)
    service_name: str = ''
    url: str = ''
    method: str = 'GET'
    status_code: Optional[int] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    validation_errors: List[str] = field(default_factory=list)
    critical: bool = False

    @property
    def is_timeout(self) -> bool:
        """是否为超时失败"""
        return self.error_type == ERROR_TYPE_TIMEOUT

    @property
    def is_connection_failure(self) -> bool:
        """是否为连接层失败（超时、DNS、连接被拒绝）"""
        return self.error_type in (ERROR_TYPE_TIMEOUT, ERROR_TYPE_DNS, ERROR_TYPE_CONNECTION)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'service_id': self.service_id,
            'service_name': self.service_name,
            'url': self.url,
            'method': self.method,
            'timestamp': self.timestamp.isoformat(),
            'success': self.success,
            'status': self.status.value,
            'response_time_ms': self.response_time_ms,
            'status_code': self.status_code,
            'message': self.message,
            'error': self.error,
            'error_type': self.error_type,
            'validation_errors': list(self.validation_errors),
            'critical': self.critical
        }


@dataclass
class EvidenceEntry:
    """持久化的探测证据，SLO 计算的原始数据"""
    service_id: str
    timestamp: datetime
    success: bool
    status: ServiceStatus
    response_time_ms: float
    service_name: str = ''
    status_code: Optional[int] = None
    level: EvidenceLevel = EvidenceLevel.LOW
    message: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'service_id': self.service_id,
            'service_name': self.service_name,
            'timestamp': self.timestamp.isoformat(),
            'success': self.success,
            'status': self.status.value,
            'response_time_ms': self.response_time_ms,
            'status_code': self.status_code,
            'level': self.level.value,
            'message': self.message
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EvidenceEntry':
        return cls(
            service_id=data['service_id'],
            service_name=data.get('service_name', ''),
            timestamp=datetime.fromisoformat(data['timestamp']),
            success=bool(data['success']),
            status=ServiceStatus(data.get('status', ServiceStatus.UNKNOWN.value)),
            response_time_ms=float(data.get('response_time_ms', 0)),
            status_code=data.get('status_code'),
            level=EvidenceLevel(data.get('level', EvidenceLevel.LOW.value)),
            message=data.get('message', '')
        )


@dataclass
class ServiceStatistics:
    """服务累计统计，由调度器在每个检查结果上增量更新"""
    service_id: str
    service_name: str = ''
    total_checks: int = 0
    successful_checks: int = 0
    failed_checks: int = 0
    uptime: float = 100.0
    average_response_time: float = 0.0
    min_response_time: Optional[float] = None
    max_response_time: Optional[float] = None
    last_status: ServiceStatus = ServiceStatus.UNKNOWN
    last_check: Optional[datetime] = None
    last_downtime: Optional[datetime] = None
    last_downtime_duration: Optional[float] = None
    skipped_ticks: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'service_id': self.service_id,
            'service_name': self.service_name,
            'total_checks': self.total_checks,
            'successful_checks': self.successful_checks,
            'failed_checks': self.failed_checks,
            'uptime': self.uptime,
            'average_response_time': self.average_response_time,
            'min_response_time': self.min_response_time,
            'max_response_time': self.max_response_time,
            'last_status': self.last_status.value,
            'last_check': self.last_check.isoformat() if self.last_check else None,
            'last_downtime': self.last_downtime.isoformat() if self.last_downtime else None,
            'last_downtime_duration': self.last_downtime_duration,
            'skipped_ticks': self.skipped_ticks
        }
