"""事件单相关的数据模型"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, List


class IncidentStatus(str, Enum):
    """事件单状态，按声明顺序单向流转"""
    NEW = 'new'
    INVESTIGATING = 'investigating'
    IN_PROGRESS = 'in_progress'
    RESOLVED = 'resolved'
    CLOSED = 'closed'


ACTIVE_INCIDENT_STATUSES = (
    IncidentStatus.NEW,
    IncidentStatus.INVESTIGATING,
    IncidentStatus.IN_PROGRESS,
)

INCIDENT_STATUS_ORDER = {status: index for index, status in enumerate(IncidentStatus)}


class IncidentSeverity(str, Enum):
    """事件单严重程度"""
    CRITICAL = 'critical'
    HIGH = 'high'
    MEDIUM = 'medium'
    LOW = 'low'


class IncidentEventType(str, Enum):
    """时间线事件类型"""
    CREATED = 'created'
    STATUS_CHANGE = 'status_change'
    UPDATE = 'update'
    RESOLVED = 'resolved'
    CLOSED = 'closed'
    FAILED_CHECK = 'failed_check'


@dataclass
class IncidentEvent:
    """时间线事件"""
    type: IncidentEventType
    message: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'message': self.message,
            'timestamp': self.timestamp.isoformat()
        }


@dataclass
class IncidentMetadata:
    """事件单附加信息"""
    assigned_to: Optional[str] = None
    root_cause: Optional[str] = None
    resolution: Optional[str] = None
    tags: List[str] = field(default_factory=list)


@dataclass
class Incident:
    """事件单"""
    service_id: str
    severity: IncidentSeverity
    description: str
    service_name: str = ''
    status: IncidentStatus = IncidentStatus.NEW
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    affected_checks: int = 1
    timeline: List[IncidentEvent] = field(default_factory=list)
    metadata: IncidentMetadata = field(default_factory=IncidentMetadata)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    resolution_time_minutes: Optional[float] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_INCIDENT_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'service_id': self.service_id,
            'service_name': self.service_name,
            'severity': self.severity.value,
            'status': self.status.value,
            'description': self.description,
            'affected_checks': self.affected_checks,
            'timeline': [event.to_dict() for event in self.timeline],
            'metadata': {
                'assigned_to': self.metadata.assigned_to,
                'root_cause': self.metadata.root_cause,
                'resolution': self.metadata.resolution,
                'tags': list(self.metadata.tags)
            },
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
            'closed_at': self.closed_at.isoformat() if self.closed_at else None,
            'resolution_time_minutes': self.resolution_time_minutes
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Incident':
        def parse_time(value: Optional[str]) -> Optional[datetime]:
            return datetime.fromisoformat(value) if value else None

        metadata = data.get('metadata') or {}
        return cls(
            id=data['id'],
            service_id=data['service_id'],
            service_name=data.get('service_name', ''),
            severity=IncidentSeverity(data['severity']),
            status=IncidentStatus(data['status']),
            description=data.get('description', ''),
            affected_checks=int(data.get('affected_checks', 1)),
            timeline=[
                IncidentEvent(
                    type=IncidentEventType(event['type']),
                    message=event['message'],
                    timestamp=datetime.fromisoformat(event['timestamp'])
                )
                for event in data.get('timeline', [])
            ],
            metadata=IncidentMetadata(
                assigned_to=metadata.get('assigned_to'),
                root_cause=metadata.get('root_cause'),
                resolution=metadata.get('resolution'),
                tags=list(metadata.get('tags', []))
            ),
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            resolved_at=parse_time(data.get('resolved_at')),
            closed_at=parse_time(data.get('closed_at')),
            resolution_time_minutes=data.get('resolution_time_minutes')
        )


@dataclass
class IncidentStatistics:
    """事件单聚合统计"""
    total: int = 0
    active: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    by_severity: Dict[str, int] = field(default_factory=dict)
    mean_time_to_resolution: float = 0.0
