"""自定义异常类和错误代码"""

import traceback
from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime


class ErrorCode(Enum):
    """错误代码枚举"""
    # 通用错误 (1000-1999)
    UNKNOWN_ERROR = 1000
    INITIALIZATION_ERROR = 1001
    VALIDATION_ERROR = 1002

    # 配置错误 (2000-2999)
    CONFIG_FILE_NOT_FOUND = 2000
    CONFIG_PARSE_ERROR = 2001
    CONFIG_VALIDATION_ERROR = 2002
    CONFIG_RELOAD_ERROR = 2003
    INVALID_SCHEDULE = 2004
    DUPLICATE_SERVICE_ID = 2005

    # 探测错误 (3000-3999)
    PROBE_ERROR = 3000
    CONNECTION_ERROR = 3001
    TIMEOUT_ERROR = 3002
    INVALID_RESPONSE = 3003

    # 通知错误 (4000-4999)
    NOTIFIER_CONFIG_ERROR = 4000
    NOTIFICATION_SEND_ERROR = 4001
    NOTIFICATION_TEMPLATE_ERROR = 4002

    # 调度错误 (5000-5999)
    SCHEDULER_ERROR = 5000
    TASK_EXECUTION_ERROR = 5001

    # 事件单错误 (6000-6999)
    INCIDENT_ERROR = 6000
    INCIDENT_NOT_FOUND = 6001
    INCIDENT_CONFLICT = 6002
    INVALID_INCIDENT_TRANSITION = 6003

    # SLO错误 (7000-7999)
    SLO_ERROR = 7000

    # 存储错误 (8000-8999)
    EVIDENCE_STORE_ERROR = 8000
    PERSISTENCE_ERROR = 8001


class NocMonitorError(Exception):
    """NOC监控系统基础异常类"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = True
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """将异常转换为字典格式"""
        return {
            'error_code': self.error_code.value,
            'error_name': self.error_code.name,
            'message': self.message,
            'details': self.details,
            'recoverable': self.recoverable,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
            'traceback': traceback.format_exc() if self.cause else None
        }

    def format_error(self) -> str:
        """格式化错误信息"""
        error_msg = f"[{self.error_code.name}] {self.message}"
        if self.details:
            details_str = ", ".join([f"{k}={v}" for k, v in self.details.items()])
            error_msg += f" (详情: {details_str})"
        if self.cause:
            error_msg += f" (原因: {str(self.cause)})"
        return error_msg


class ConfigError(NocMonitorError):
    """配置相关异常，在加载阶段抛出"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFIG_VALIDATION_ERROR,
        config_path: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', None) or {}
        if config_path:
            details['config_path'] = config_path
        kwargs.setdefault('recoverable', False)
        super().__init__(message, error_code, details, **kwargs)


class ProbeError(NocMonitorError):
    """探测器相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.PROBE_ERROR,
        service_id: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', None) or {}
        if service_id:
            details['service_id'] = service_id
        super().__init__(message, error_code, details, **kwargs)


class NotificationError(NocMonitorError):
    """通知相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.NOTIFICATION_SEND_ERROR,
        notifier_name: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', None) or {}
        if notifier_name:
            details['notifier_name'] = notifier_name
        super().__init__(message, error_code, details, **kwargs)


class NotificationConfigError(NotificationError):
    """通知器配置异常"""

    def __init__(self, message: str, notifier_name: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            ErrorCode.NOTIFIER_CONFIG_ERROR,
            notifier_name=notifier_name,
            recoverable=False,
            **kwargs
        )


class NotificationSendError(NotificationError):
    """通知发送异常"""

    def __init__(self, message: str, notifier_name: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            ErrorCode.NOTIFICATION_SEND_ERROR,
            notifier_name=notifier_name,
            recoverable=True,
            **kwargs
        )


class SchedulerError(NocMonitorError):
    """调度器相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.SCHEDULER_ERROR,
        service_id: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', None) or {}
        if service_id:
            details['service_id'] = service_id
        super().__init__(message, error_code, details, **kwargs)


class IncidentError(NocMonitorError):
    """事件单相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INCIDENT_ERROR,
        incident_id: Optional[str] = None,
        service_id: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', None) or {}
        if incident_id:
            details['incident_id'] = incident_id
        if service_id:
            details['service_id'] = service_id
        kwargs.setdefault('recoverable', False)
        super().__init__(message, error_code, details, **kwargs)


class IncidentNotFoundError(IncidentError):
    """事件单不存在"""

    def __init__(self, incident_id: str, **kwargs):
        super().__init__(
            f"事件单不存在: {incident_id}",
            ErrorCode.INCIDENT_NOT_FOUND,
            incident_id=incident_id,
            **kwargs
        )


class IncidentConflictError(IncidentError):
    """同一服务已存在活动事件单"""

    def __init__(self, service_id: str, active_incident_id: str, **kwargs):
        super().__init__(
            f"服务 {service_id} 已存在活动事件单: {active_incident_id}",
            ErrorCode.INCIDENT_CONFLICT,
            incident_id=active_incident_id,
            service_id=service_id,
            **kwargs
        )


class InvalidIncidentTransitionError(IncidentError):
    """事件单状态流转非法"""

    def __init__(self, incident_id: str, from_status: str, to_status: str, **kwargs):
        details = kwargs.pop('details', None) or {}
        details.update({'from_status': from_status, 'to_status': to_status})
        super().__init__(
            f"事件单 {incident_id} 不允许从 {from_status} 变更为 {to_status}",
            ErrorCode.INVALID_INCIDENT_TRANSITION,
            incident_id=incident_id,
            details=details,
            **kwargs
        )


class SLOError(NocMonitorError):
    """SLO相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.SLO_ERROR,
        slo_id: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', None) or {}
        if slo_id:
            details['slo_id'] = slo_id
        super().__init__(message, error_code, details, **kwargs)


class EvidenceStoreError(NocMonitorError):
    """证据存储相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.EVIDENCE_STORE_ERROR,
        **kwargs
    ):
        super().__init__(message, error_code, **kwargs)
