"""工具模块"""

from .config_validator import ConfigValidator
from .exceptions import (
    NocMonitorError, ErrorCode, ConfigError, ProbeError, NotificationError,
    SchedulerError, IncidentError, SLOError, EvidenceStoreError
)
from .log_manager import (
    LogManager, LogLevel, get_logger, configure_logging, build_log_config, log_manager
)
from .schedule import Schedule, parse_schedule

__all__ = [
    'ConfigValidator',
    'NocMonitorError', 'ErrorCode', 'ConfigError', 'ProbeError', 'NotificationError',
    'SchedulerError', 'IncidentError', 'SLOError', 'EvidenceStoreError',
    'LogManager', 'LogLevel', 'get_logger', 'configure_logging', 'build_log_config',
    'log_manager', 'Schedule', 'parse_schedule'
]
