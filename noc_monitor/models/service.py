"""服务定义相关的数据模型"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, Optional, List, Union


class ServiceStatus(str, Enum):
    """服务状态"""
    UP = 'up'
    DOWN = 'down'
    DEGRADED = 'degraded'
    UNKNOWN = 'unknown'


@dataclass(frozen=True)
class ExpectedResponse:
    """期望的响应断言"""
    status_code: Optional[int] = None
    accepted_status_codes: List[int] = field(default_factory=list)
    body_contains: Optional[str] = None
    required_headers: List[str] = field(default_factory=list)
    max_response_time_ms: Optional[float] = None


@dataclass(frozen=True)
class HealthCheckConfig:
    """单个服务的健康检查规则"""
    method: str = 'GET'
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[Union[str, Dict[str, Any], List[Any]]] = None
    timeout_ms: Optional[int] = None
    follow_redirects: bool = True
    expected_response: Optional[ExpectedResponse] = None


@dataclass(frozen=True)
class CooldownPolicy:
    """告警冷却策略"""
    duration_minutes: float = 0
    max_alerts_in_period: Optional[int] = None


@dataclass(frozen=True)
class RetryPolicy:
    """告警重试宽限策略"""
    attempts: int = 0
    delay_ms: int = 0


@dataclass(frozen=True)
class EscalationPolicy:
    """告警升级策略"""
    enabled: bool = False
    after_minutes: float = 0
    notify_to: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class AlertPolicy:
    """服务级告警策略"""
    enabled: bool = True
    notify_on_recovery: bool = False
    recipients: List[str] = field(default_factory=list)
    cooldown: Optional[CooldownPolicy] = None
    retry: Optional[RetryPolicy] = None
    escalation: Optional[EscalationPolicy] = None


@dataclass(frozen=True)
class ServiceDefinition:
    """受监控服务的定义

    一次监控运行期间不可变，重新加载配置时需要重启对应的调度任务。
    """
    id: str
    name: str
    url: str
    interval: Union[int, str] = 60
    critical: bool = False
    enabled: bool = True
    description: str = ''
    tags: List[str] = field(default_factory=list)
    health_check: Optional[HealthCheckConfig] = None
    alerts: Optional[AlertPolicy] = None
