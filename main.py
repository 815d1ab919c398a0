#!/usr/bin/env python3
"""
NOC 监控引擎主应用程序入口

集成调度器、告警、事件单、SLO 和模式检测组件，
负责启动、配置热更新、信号处理和优雅关闭。
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Any, Dict, Optional, Set

from noc_monitor import __version__
from noc_monitor.alerts.engine import AlertingEngine
from noc_monitor.alerts.integrator import AlertIntegrator
from noc_monitor.alerts.manager import NotificationManager
from noc_monitor.checkers.http_prober import HttpProber
from noc_monitor.incidents.manager import IncidentManager
from noc_monitor.incidents.repository import IncidentRepository
from noc_monitor.models.alert import AlertPriority, Notification, NotificationKind
from noc_monitor.models.pattern import PatternSeverity
from noc_monitor.patterns.detector import PatternDetector
from noc_monitor.services.config_manager import ConfigManager
from noc_monitor.services.config_watcher import ConfigWatcher
from noc_monitor.services.monitor_scheduler import ServiceScheduler
from noc_monitor.services.slo_monitor import SLOMonitor
from noc_monitor.services.statistics_manager import StatisticsManager
from noc_monitor.slo.calculator import SLOCalculator
from noc_monitor.slo.repository import SLORepository
from noc_monitor.storage.evidence import (
    BaseEvidenceStore, InMemoryEvidenceStore, JsonLinesEvidenceStore
)
from noc_monitor.utils.exceptions import ConfigError, NocMonitorError
from noc_monitor.utils.log_manager import LOGGER_NAMESPACE, build_log_config, get_logger, log_manager

_PATTERN_PRIORITY = {
    PatternSeverity.CRITICAL: AlertPriority.CRITICAL,
    PatternSeverity.HIGH: AlertPriority.HIGH,
    PatternSeverity.MEDIUM: AlertPriority.MEDIUM,
    PatternSeverity.LOW: AlertPriority.LOW,
}


class NocMonitorApp:
    """NOC 监控引擎主应用程序类"""

    def __init__(self, config_path: str, log_overrides: Optional[Dict[str, Any]] = None):
        """初始化应用程序

        Args:
            config_path: 配置文件路径
            log_overrides: 命令行指定的日志配置，优先于配置文件
        """
        self.config_path = config_path
        self.log_overrides = dict(log_overrides or {})
        self.logger: Optional[logging.Logger] = None
        self.is_running = False
        self.shutdown_event = asyncio.Event()

        # 核心组件
        self.config_manager: Optional[ConfigManager] = None
        self.config_watcher: Optional[ConfigWatcher] = None
        self.evidence_store: Optional[BaseEvidenceStore] = None
        self.statistics_manager: Optional[StatisticsManager] = None
        self.notification_manager: Optional[NotificationManager] = None
        self.alert_integrator: Optional[AlertIntegrator] = None
        self.incident_manager: Optional[IncidentManager] = None
        self.pattern_detector: Optional[PatternDetector] = None
        self.slo_repository: Optional[SLORepository] = None
        self.slo_monitor: Optional[SLOMonitor] = None
        self.scheduler: Optional[ServiceScheduler] = None

        self.background_tasks: Set[asyncio.Task] = set()

    async def initialize(self):
        """初始化应用程序组件

        Raises:
            ConfigError: 配置文件无效
        """
        try:
            self.config_manager = ConfigManager(self.config_path)
            self.config_manager.load_config()
            global_config = self.config_manager.get_global_config()

            self._configure_logging(global_config)
            self.logger = get_logger('main')
            self.logger.info("开始初始化 NOC 监控引擎")

            evidence_file = global_config.get('evidence_file')
            self.evidence_store = (
                JsonLinesEvidenceStore(evidence_file) if evidence_file else InMemoryEvidenceStore()
            )

            prober = HttpProber(
                evidence_store=self.evidence_store,
                default_timeout_ms=global_config['default_timeout_ms']
            )
            self.statistics_manager = StatisticsManager(
                history_size=global_config['history_size'],
                persistence_file=global_config.get('statistics_file'),
                save_interval=global_config['statistics_save_interval']
            )

            self.notification_manager = NotificationManager(self.config_manager.get_notifiers_config())
            self.alert_integrator = AlertIntegrator(
                AlertingEngine(history_size=global_config['history_size']),
                self.notification_manager
            )
            self.incident_manager = IncidentManager(
                IncidentRepository(global_config.get('incidents_file')),
                notification_manager=self.notification_manager,
                slow_response_threshold_ms=global_config['slow_response_threshold_ms']
            )
            self.pattern_detector = PatternDetector(self.config_manager.get_pattern_detection_config())

            definitions = self.config_manager.get_service_definitions()
            self.slo_repository = SLORepository(
                self.config_manager.get_slo_definitions(),
                persistence_file=global_config.get('slo_status_file')
            )
            self.slo_monitor = SLOMonitor(
                SLOCalculator(burn_rate_ceiling=global_config['burn_rate_ceiling']),
                self.slo_repository,
                self.evidence_store,
                notification_manager=self.notification_manager,
                service_names={d.id: d.name for d in definitions},
                evidence_retention_days=global_config['evidence_retention_days']
            )

            self.scheduler = ServiceScheduler(
                prober,
                self.statistics_manager,
                alert_integrator=self.alert_integrator,
                incident_manager=self.incident_manager,
                pattern_detector=self.pattern_detector
            )
            self.scheduler.configure_services(definitions)

            self.config_watcher = ConfigWatcher(self.config_manager, asyncio.get_running_loop())
            self.config_watcher.add_change_callback(self._on_config_changed_callback)

            self.logger.info("应用程序组件初始化完成")

        except Exception as e:
            if self.logger:
                self.logger.error(f"应用程序初始化失败: {e}", exc_info=True)
            else:
                print(f"应用程序初始化失败: {e}", file=sys.stderr)
            raise

    def _configure_logging(self, global_config: Dict[str, Any]):
        """按全局配置和命令行覆盖项配置日志系统"""
        merged = dict(global_config)
        merged.update({k: v for k, v in self.log_overrides.items() if v})
        log_manager.configure(build_log_config(merged))
        # 各模块通过 logging.getLogger(__name__) 获取的记录器向包根记录器传播
        get_logger(LOGGER_NAMESPACE)

    def _on_config_changed_callback(self, old_config: Dict[str, Any],
                                    new_config: Dict[str, Any]):
        """配置文件变更回调，在事件循环线程中执行"""
        task = asyncio.create_task(self._apply_config())
        self.background_tasks.add(task)
        task.add_done_callback(self.background_tasks.discard)

    async def _apply_config(self):
        """应用新配置，只重启发生变化的服务调度"""
        try:
            self.logger.info("检测到配置文件变更，重新加载配置")
            global_config = self.config_manager.get_global_config()
            self._configure_logging(global_config)

            self.notification_manager.load_notifiers(self.config_manager.get_notifiers_config())

            definitions = self.config_manager.get_service_definitions()
            changes = await self.scheduler.reload(definitions)

            self.slo_repository.set_definitions(self.config_manager.get_slo_definitions())
            self.slo_monitor.service_names = {d.id: d.name for d in definitions}

            self.logger.info(f"配置重新加载完成: {changes}")

        except NocMonitorError as e:
            self.logger.error(f"重新加载配置失败: {e.format_error()}")
        except Exception as e:
            self.logger.error(f"重新加载配置失败: {e}", exc_info=True)

    async def _pattern_analysis_loop(self, interval: float):
        """定期分析故障模式，并发送尚未通知的模式"""
        config = self.pattern_detector.config
        self.logger.info(f"启动模式分析任务，分析周期 {interval} 秒")
        while True:
            await asyncio.sleep(interval)
            try:
                self.pattern_detector.analyze_all()
                if config.notify_on_detection:
                    for pattern in self.pattern_detector.get_unnotified_patterns():
                        await self._notify_pattern(pattern)
            except Exception as e:
                self.logger.error(f"模式分析异常: {e}")

    async def _notify_pattern(self, pattern):
        notification = Notification(
            kind=NotificationKind.PATTERN,
            title=f"检测到故障模式: {pattern.type.value}",
            message=pattern.description,
            service_id=pattern.service_id,
            service_name=pattern.service_name,
            priority=_PATTERN_PRIORITY[pattern.severity],
            timestamp=pattern.detected_at,
            data={
                'pattern_id': pattern.id,
                'confidence': round(pattern.confidence, 1),
                'recommendations': '；'.join(pattern.recommendations)
            }
        )
        outcome = await self.notification_manager.dispatch(notification)
        if any(outcome.values()):
            self.pattern_detector.mark_as_notified(pattern.id)

    def _spawn(self, coro, name: str):
        task = asyncio.create_task(coro, name=name)
        self.background_tasks.add(task)
        task.add_done_callback(self.background_tasks.discard)
        return task

    async def start(self):
        """启动应用程序，直到收到关闭信号"""
        if self.is_running:
            self.logger.warning("应用程序已经在运行")
            return

        try:
            self.is_running = True
            self.logger.info("启动 NOC 监控引擎")

            self.config_watcher.start_watching()
            await self.scheduler.start()

            global_config = self.config_manager.get_global_config()
            self._spawn(self.slo_monitor.run(global_config['slo_evaluation_interval']), 'slo-monitor')
            if self.pattern_detector.config.enabled:
                self._spawn(
                    self._pattern_analysis_loop(self.pattern_detector.config.analysis_interval),
                    'pattern-analysis'
                )

            self.logger.info("NOC 监控引擎启动完成")

            await self.shutdown_event.wait()

        except Exception as e:
            self.logger.error(f"应用程序运行异常: {e}", exc_info=True)
            raise
        finally:
            await self.stop()

    async def stop(self):
        """停止应用程序"""
        if not self.is_running:
            return

        self.logger.info("正在停止 NOC 监控引擎...")
        self.is_running = False

        if self.scheduler:
            await self.scheduler.stop()

        if self.config_watcher:
            self.config_watcher.stop_watching()

        if self.slo_monitor:
            self.slo_monitor.stop()

        for task in self.background_tasks:
            if not task.done():
                task.cancel()
        if self.background_tasks:
            await asyncio.gather(*self.background_tasks, return_exceptions=True)
        self.background_tasks.clear()

        if self.alert_integrator:
            await self.alert_integrator.shutdown()

        if self.statistics_manager:
            self.statistics_manager.flush()

        self.logger.info("NOC 监控引擎已停止")
        log_manager.cleanup()

    def shutdown(self):
        """触发应用程序关闭"""
        if self.logger:
            self.logger.info("收到关闭信号")
        self.shutdown_event.set()

    def get_status(self) -> Dict[str, Any]:
        """获取应用程序状态

        Returns:
            应用程序状态信息
        """
        status: Dict[str, Any] = {
            'version': __version__,
            'is_running': self.is_running,
            'config_path': self.config_path,
            'background_tasks_count': len(self.background_tasks)
        }

        if self.scheduler:
            status['scheduler_stats'] = self.scheduler.get_scheduler_stats()
            status['service_status'] = self.scheduler.get_service_status()
        if self.statistics_manager:
            status['summary'] = self.statistics_manager.get_summary()
        if self.alert_integrator:
            status['alert_stats'] = self.alert_integrator.get_alert_stats()
        if self.incident_manager:
            stats = self.incident_manager.get_statistics()
            status['incidents'] = {
                'total': stats.total,
                'active': stats.active,
                'mean_time_to_resolution': stats.mean_time_to_resolution
            }
        if self.slo_monitor:
            statuses = self.slo_monitor.get_current_statuses()
            status['slo'] = self.slo_monitor.calculator.calculate_aggregated_stats(statuses)
        if self.pattern_detector:
            status['patterns'] = [p.to_dict() for p in self.pattern_detector.get_detected_patterns()]

        return status


def create_argument_parser() -> argparse.ArgumentParser:
    """创建命令行参数解析器"""
    parser = argparse.ArgumentParser(
        prog='noc-monitor',
        description='NOC 监控引擎 - 探测 HTTP 服务，维护告警、事件单、SLO 和故障模式',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例用法:
  %(prog)s config.yaml                    # 使用指定配置文件启动监控
  %(prog)s --validate config.yaml        # 验证配置文件格式
  %(prog)s --check-once config.yaml      # 执行一次检查后退出
  %(prog)s --test-alerts config.yaml     # 测试通知渠道
  %(prog)s --version                      # 显示版本信息
        """
    )

    parser.add_argument('config_file', nargs='?', help='YAML配置文件路径')
    parser.add_argument('--version', '-v', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--validate', action='store_true', help='验证配置文件格式并退出')
    parser.add_argument('--test-alerts', action='store_true', help='测试告警系统并退出')
    parser.add_argument('--check-once', action='store_true', help='执行一次健康检查后退出')
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='设置日志级别（覆盖配置文件设置）'
    )
    parser.add_argument('--log-file', help='日志文件路径（覆盖配置文件设置）')

    return parser


def validate_config_file(config_path: str) -> bool:
    """验证配置文件

    Args:
        config_path: 配置文件路径

    Returns:
        验证是否成功
    """
    print(f"正在验证配置文件: {config_path}")
    try:
        config_manager = ConfigManager(config_path)
        config_manager.load_config()
    except ConfigError as e:
        print(f"❌ 配置文件验证失败: {e.format_error()}")
        return False

    services = config_manager.get_service_definitions()
    slos = config_manager.get_slo_definitions()
    notifiers = config_manager.get_notifiers_config()

    print("✅ 配置文件验证成功!")
    print(f"   - 服务数量: {len(services)}")
    for definition in services:
        print(f"     * {definition.id} ({definition.url}, interval={definition.interval})")
    print(f"   - SLO 数量: {len(slos)}")
    for slo in slos:
        print(f"     * {slo.id} ({slo.indicator.value} >= {slo.target}%, {slo.window.value})")
    print(f"   - 通知器数量: {len(notifiers)}")
    for notifier in notifiers:
        print(f"     * {notifier.get('name')} ({notifier.get('type')})")
    return True


async def run_alert_test(app: NocMonitorApp) -> bool:
    """测试告警系统"""
    await app.initialize()
    success = await app.alert_integrator.test_alert_system()
    print("✅ 告警系统测试成功!" if success else "❌ 告警系统测试失败!")
    return success


async def check_once(app: NocMonitorApp) -> bool:
    """执行一次健康检查

    Returns:
        是否全部服务健康
    """
    await app.initialize()
    results = await app.scheduler.check_all_services_now()
    app.statistics_manager.flush()

    print(f"✅ 健康检查完成，共检查 {len(results)} 个服务:")
    all_healthy = True
    for service_id, result in results.items():
        if result is None:
            print(f"   ❌ {service_id}: 检查失败")
            all_healthy = False
        elif result.success:
            print(f"   ✅ {service_id}: 健康 (响应时间: {result.response_time_ms:.0f}ms)")
        else:
            print(f"   ❌ {service_id}: {result.status.value} - {result.message}")
            all_healthy = False
    return all_healthy


async def main() -> int:
    """主函数

    Returns:
        进程退出码
    """
    parser = create_argument_parser()
    args = parser.parse_args()

    if not args.config_file:
        parser.print_help()
        return 1

    config_path = args.config_file
    if not os.path.exists(config_path):
        print(f"配置文件不存在: {config_path}", file=sys.stderr)
        return 1

    if args.validate:
        return 0 if validate_config_file(config_path) else 1

    app = NocMonitorApp(config_path, {'log_level': args.log_level, 'log_file': args.log_file})

    try:
        if args.test_alerts:
            return 0 if await run_alert_test(app) else 1

        if args.check_once:
            return 0 if await check_once(app) else 1

        await app.initialize()

        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, app.shutdown)

        print(f"NOC 监控引擎 v{__version__} 已启动")
        print(f"配置文件: {config_path}")
        print("按 Ctrl+C 停止程序")

        await app.start()
        return 0

    except KeyboardInterrupt:
        print("\n用户中断程序")
        return 0
    except ConfigError as e:
        print(f"配置错误: {e.format_error()}", file=sys.stderr)
        return 1
    except NocMonitorError as e:
        print(f"NOC 监控引擎错误: {e.format_error()}", file=sys.stderr)
        return 1
    finally:
        await app.stop()


def cli():
    """命令行入口"""
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
