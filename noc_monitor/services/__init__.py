"""服务模块：调度、统计、SLO 监控和配置"""

from .config_manager import ConfigManager, build_service_definition, build_slo_definition
from .config_watcher import ConfigWatcher
from .monitor_scheduler import ServiceScheduler
from .slo_monitor import SLOMonitor
from .statistics_manager import StatisticsManager

__all__ = [
    'ConfigManager',
    'ConfigWatcher',
    'ServiceScheduler',
    'SLOMonitor',
    'StatisticsManager',
    'build_service_definition',
    'build_slo_definition'
]
