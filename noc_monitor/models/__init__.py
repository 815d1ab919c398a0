"""数据模型模块"""

from .service import (
    ServiceStatus, ServiceDefinition, HealthCheckConfig, ExpectedResponse,
    AlertPolicy, CooldownPolicy, RetryPolicy, EscalationPolicy
)
from .health_check import CheckResult, EvidenceEntry, EvidenceLevel, ServiceStatistics
from .alert import (
    AlertType, AlertPriority, AlertStatus, AlertRecord, AlertDecision,
    EscalationDecision, ServiceHealthState, CooldownState, Notification, NotificationKind
)
from .incident import (
    Incident, IncidentStatus, IncidentSeverity, IncidentEvent, IncidentEventType,
    IncidentMetadata, IncidentStatistics
)
from .slo import (
    SLODefinition, SLOStatus, SLOWindow, IndicatorType, ViolationRisk, TimeWindow,
    SLOAlert, SLOAlertType, SLOAlertSeverity
)
from .pattern import (
    DetectedPattern, PatternType, PatternSeverity, PatternDetectionConfig, MetricTrend
)

__all__ = [
    'ServiceStatus', 'ServiceDefinition', 'HealthCheckConfig', 'ExpectedResponse',
    'AlertPolicy', 'CooldownPolicy', 'RetryPolicy', 'EscalationPolicy',
    'CheckResult', 'EvidenceEntry', 'EvidenceLevel', 'ServiceStatistics',
    'AlertType', 'AlertPriority', 'AlertStatus', 'AlertRecord', 'AlertDecision',
    'EscalationDecision', 'ServiceHealthState', 'CooldownState', 'Notification',
    'NotificationKind',
    'Incident', 'IncidentStatus', 'IncidentSeverity', 'IncidentEvent', 'IncidentEventType',
    'IncidentMetadata', 'IncidentStatistics',
    'SLODefinition', 'SLOStatus', 'SLOWindow', 'IndicatorType', 'ViolationRisk',
    'TimeWindow', 'SLOAlert', 'SLOAlertType', 'SLOAlertSeverity',
    'DetectedPattern', 'PatternType', 'PatternSeverity', 'PatternDetectionConfig',
    'MetricTrend'
]
