"""NOC 监控引擎

周期性探测 HTTP 服务，把探测结果转换为告警、事件单、SLO 达标情况和故障模式。
"""

__version__ = "1.0.0"
