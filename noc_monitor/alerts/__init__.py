"""告警模块"""

from .base import BaseNotifier
from .engine import AlertingEngine
from .escalation import EscalationScheduler
from .http_notifier import HTTPNotifier
from .integrator import AlertIntegrator
from .log_notifier import LogNotifier
from .manager import NotificationManager, create_notifier

__all__ = [
    'BaseNotifier',
    'AlertingEngine',
    'EscalationScheduler',
    'HTTPNotifier',
    'LogNotifier',
    'NotificationManager',
    'create_notifier',
    'AlertIntegrator'
]
