"""服务调度器模块

为每个启用的服务维护一个独立的 asyncio 调度任务。每次触发执行一条流水线：
探测 -> 统计更新 -> 告警集成器 -> 事件单管理器 -> 模式检测器。
同一服务的流水线不会重叠，上一次未完成时本次触发被跳过。
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from .statistics_manager import StatisticsManager
from ..alerts.integrator import AlertIntegrator
from ..checkers.base import BaseProber
from ..incidents.manager import IncidentManager
from ..models.health_check import CheckResult, ServiceStatistics
from ..models.service import ServiceDefinition
from ..patterns.detector import PatternDetector
from ..utils.exceptions import ConfigError, ErrorCode
from ..utils.schedule import Schedule, parse_schedule


class ServiceScheduler:
    """服务调度器

    不同服务的流水线并发执行，同一服务内部严格按顺序处理检查结果。
    """

    def __init__(self, prober: BaseProber, statistics_manager: StatisticsManager,
                 alert_integrator: Optional[AlertIntegrator] = None,
                 incident_manager: Optional[IncidentManager] = None,
                 pattern_detector: Optional[PatternDetector] = None):
        """初始化服务调度器

        Args:
            prober: 探测器
            statistics_manager: 统计管理器
            alert_integrator: 告警集成器
            incident_manager: 事件单管理器
            pattern_detector: 模式检测器
        """
        self.prober = prober
        self.statistics_manager = statistics_manager
        self.alert_integrator = alert_integrator
        self.incident_manager = incident_manager
        self.pattern_detector = pattern_detector

        self.definitions: Dict[str, ServiceDefinition] = {}
        self.schedules: Dict[str, Schedule] = {}
        self.loop_tasks: Dict[str, asyncio.Task] = {}
        self.pipeline_tasks: Dict[str, asyncio.Task] = {}
        self.last_check_times: Dict[str, datetime] = {}
        self.next_check_times: Dict[str, datetime] = {}
        self.is_running = False
        self.completed_checks = 0
        self.discarded_results = 0
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _parse_definitions(definitions: Iterable[ServiceDefinition]) -> Dict[str, Schedule]:
        """校验服务ID唯一并解析全部调度表达式，任何错误都在调度开始前抛出"""
        schedules: Dict[str, Schedule] = {}
        for definition in definitions:
            if definition.id in schedules:
                raise ConfigError(
                    f"服务ID重复: {definition.id}",
                    ErrorCode.DUPLICATE_SERVICE_ID
                )
            try:
                schedules[definition.id] = parse_schedule(definition.interval)
            except ConfigError as e:
                raise ConfigError(
                    f"服务 {definition.id} 的调度表达式无效: {e.message}",
                    ErrorCode.INVALID_SCHEDULE,
                    cause=e
                )
        return schedules

    def configure_services(self, definitions: Iterable[ServiceDefinition]) -> None:
        """配置监控服务

        Args:
            definitions: 服务定义列表

        Raises:
            ConfigError: 服务ID重复或调度表达式无效
        """
        definitions = list(definitions)
        schedules = self._parse_definitions(definitions)

        self.definitions = {definition.id: definition for definition in definitions}
        self.schedules = schedules
        if self.alert_integrator is not None:
            self.alert_integrator.update_services(definitions)

        for definition in definitions:
            self.logger.info(
                f"配置服务 {definition.id}: {definition.url}, "
                f"调度={schedules[definition.id].describe()}, "
                f"{'启用' if definition.enabled else '禁用'}"
            )

    async def start(self, definitions: Optional[Iterable[ServiceDefinition]] = None):
        """启动调度器

        Args:
            definitions: 服务定义，为None时使用已配置的服务
        """
        if self.is_running:
            self.logger.warning("服务调度器已经在运行")
            return

        if definitions is not None:
            self.configure_services(definitions)

        self.is_running = True
        for service_id, definition in self.definitions.items():
            if definition.enabled:
                self._start_service(service_id)

        self.logger.info(f"服务调度器已启动，调度 {len(self.loop_tasks)} 个服务")

    async def stop(self):
        """停止调度器，取消所有调度任务和进行中的流水线"""
        if not self.is_running:
            return

        self.is_running = False
        self.logger.info("正在停止服务调度器...")

        tasks = list(self.loop_tasks.values()) + list(self.pipeline_tasks.values())
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self.loop_tasks.clear()
        self.pipeline_tasks.clear()
        self.next_check_times.clear()
        self.logger.info("服务调度器已停止")

    def _start_service(self, service_id: str) -> None:
        task = asyncio.create_task(self._service_loop(service_id), name=f"schedule-{service_id}")
        self.loop_tasks[service_id] = task

    async def _stop_service(self, service_id: str) -> None:
        tasks = [
            task for task in (self.loop_tasks.pop(service_id, None),
                              self.pipeline_tasks.pop(service_id, None))
            if task is not None
        ]
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.next_check_times.pop(service_id, None)

    async def _service_loop(self, service_id: str):
        """单个服务的调度循环"""
        schedule = self.schedules[service_id]
        now = schedule.current_time()
        delay = schedule.first_delay(now)
        last_fire = None

        try:
            while self.is_running:
                fire_at = now + timedelta(seconds=delay)
                self.next_check_times[service_id] = fire_at
                if delay > 0:
                    await asyncio.sleep(delay)

                self._tick(service_id)

                last_fire = fire_at
                now = schedule.current_time()
                delay = schedule.next_delay(now, last_fire) if schedule.is_cron else schedule.next_delay()
        except asyncio.CancelledError:
            self.logger.debug(f"服务 {service_id} 的调度任务已取消")
            raise

    def _tick(self, service_id: str) -> bool:
        """一次调度触发，上一次流水线未完成时跳过

        Returns:
            是否启动了新的流水线
        """
        running = self.pipeline_tasks.get(service_id)
        if running is not None and not running.done():
            self.statistics_manager.record_skipped_tick(service_id)
            self.logger.debug(f"服务 {service_id} 上一次检查仍在进行，跳过本次调度")
            return False

        definition = self.definitions.get(service_id)
        if definition is None:
            return False

        self._launch_pipeline(definition, scheduled=True)
        return True

    def _launch_pipeline(self, definition: ServiceDefinition, scheduled: bool) -> asyncio.Task:
        task = asyncio.create_task(self._run_pipeline(definition, scheduled=scheduled),
                                   name=f"pipeline-{definition.id}")
        self.pipeline_tasks[definition.id] = task
        task.add_done_callback(lambda t, sid=definition.id: self._on_pipeline_done(sid, t))
        return task

    def _on_pipeline_done(self, service_id: str, task: asyncio.Task) -> None:
        if self.pipeline_tasks.get(service_id) is task:
            del self.pipeline_tasks[service_id]
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(f"服务 {service_id} 的检查流水线异常: {task.exception()}")

    async def _run_pipeline(self, definition: ServiceDefinition,
                            scheduled: bool = False) -> Optional[CheckResult]:
        """执行一次探测并把结果分发给下游组件

        Args:
            definition: 服务定义
            scheduled: 是否由调度循环触发，调度器停止后到达的结果会被丢弃

        Returns:
            检查结果，结果被丢弃时返回None
        """
        started = datetime.now()
        result = await self.prober.probe(definition)

        if (scheduled and not self.is_running) or self.definitions.get(definition.id) is not definition:
            self.discarded_results += 1
            self.logger.debug(f"服务 {definition.id} 的检查结果已过期，丢弃")
            return None

        self.last_check_times[definition.id] = started
        self.completed_checks += 1
        self.statistics_manager.record(result)

        status = "健康" if result.success else "不健康"
        self.logger.info(
            f"服务 {definition.id} 检查完成: {status} ({result.status.value}), "
            f"响应时间: {result.response_time_ms:.0f}ms"
        )

        await self._dispatch(result)
        return result

    async def _dispatch(self, result: CheckResult) -> None:
        """按顺序分发检查结果，每个下游组件的异常单独捕获"""
        if self.alert_integrator is not None:
            try:
                await self.alert_integrator.process_check_result(result)
            except Exception as e:
                self.logger.error(f"告警处理服务 {result.service_id} 的检查结果失败: {e}")

        if self.incident_manager is not None:
            try:
                await self.incident_manager.handle_check_result(result)
            except Exception as e:
                self.logger.error(f"事件单处理服务 {result.service_id} 的检查结果失败: {e}")

        if self.pattern_detector is not None:
            try:
                self.pattern_detector.add_check_result(result)
            except Exception as e:
                self.logger.error(f"模式检测记录服务 {result.service_id} 的检查结果失败: {e}")

    async def check_service_now(self, service_id: str) -> Optional[CheckResult]:
        """立即检查指定服务

        Args:
            service_id: 服务ID

        Returns:
            检查结果，服务不存在时返回None
        """
        definition = self.definitions.get(service_id)
        if definition is None:
            self.logger.error(f"服务 {service_id} 不存在")
            return None

        # 与调度触发共用流水线槽位，先等待进行中的检查完成
        running = self.pipeline_tasks.get(service_id)
        while running is not None and not running.done():
            self.logger.debug(f"服务 {service_id} 正在检查，等待其完成后再立即检查")
            await asyncio.wait({running})
            running = self.pipeline_tasks.get(service_id)

        definition = self.definitions.get(service_id)
        if definition is None:
            self.logger.error(f"服务 {service_id} 在等待期间已被移除")
            return None

        self.logger.info(f"立即检查服务: {service_id}")
        return await self._launch_pipeline(definition, scheduled=False)

    async def check_all_services_now(self) -> Dict[str, Optional[CheckResult]]:
        """立即检查所有启用的服务"""
        service_ids = [sid for sid, d in self.definitions.items() if d.enabled]
        outcomes = await asyncio.gather(
            *(self.check_service_now(sid) for sid in service_ids),
            return_exceptions=True
        )

        results: Dict[str, Optional[CheckResult]] = {}
        for service_id, outcome in zip(service_ids, outcomes):
            if isinstance(outcome, Exception):
                self.logger.error(f"检查服务 {service_id} 异常: {outcome}")
                results[service_id] = None
            else:
                results[service_id] = outcome
        return results

    async def reload(self, definitions: Iterable[ServiceDefinition]) -> Dict[str, List[str]]:
        """重新加载服务定义，只重启新增、删除或变化的服务

        Returns:
            变化摘要: added / removed / changed

        Raises:
            ConfigError: 新定义无效，此时原有调度保持不变
        """
        definitions = list(definitions)
        schedules = self._parse_definitions(definitions)
        new_definitions = {definition.id: definition for definition in definitions}

        added = [sid for sid in new_definitions if sid not in self.definitions]
        removed = [sid for sid in self.definitions if sid not in new_definitions]
        changed = [
            sid for sid in new_definitions
            if sid in self.definitions and new_definitions[sid] != self.definitions[sid]
        ]

        for service_id in removed + changed:
            await self._stop_service(service_id)
        for service_id in removed:
            self.statistics_manager.remove_service(service_id)
            if self.pattern_detector is not None:
                self.pattern_detector.remove_service(service_id)

        # 未变化的服务沿用原定义对象，进行中的流水线结果仍然有效
        for service_id in new_definitions:
            if service_id not in changed and service_id in self.definitions:
                new_definitions[service_id] = self.definitions[service_id]
                schedules[service_id] = self.schedules[service_id]

        self.definitions = new_definitions
        self.schedules = schedules
        if self.alert_integrator is not None:
            self.alert_integrator.update_services(new_definitions.values())

        if self.is_running:
            for service_id in added + changed:
                if new_definitions[service_id].enabled:
                    self._start_service(service_id)

        self.logger.info(f"服务定义已重新加载: 新增 {added}, 删除 {removed}, 变更 {changed}")
        return {'added': added, 'removed': removed, 'changed': changed}

    def get_statistics(self, service_id: str) -> Optional[ServiceStatistics]:
        return self.statistics_manager.get_statistics(service_id)

    def get_all_statistics(self) -> Dict[str, ServiceStatistics]:
        return self.statistics_manager.get_all_statistics()

    def get_history(self, service_id: str, limit: Optional[int] = None) -> List[CheckResult]:
        return self.statistics_manager.get_history(service_id, limit)

    def get_service_status(self) -> Dict[str, Any]:
        """获取所有服务的调度状态

        Returns:
            服务ID到调度状态的字典
        """
        status = {}
        for service_id, definition in self.definitions.items():
            last_check = self.last_check_times.get(service_id)
            next_check = self.next_check_times.get(service_id)
            stats = self.statistics_manager.get_statistics(service_id)
            status[service_id] = {
                'name': definition.name,
                'url': definition.url,
                'enabled': definition.enabled,
                'schedule': self.schedules[service_id].describe(),
                'status': stats.last_status.value if stats else 'unknown',
                'last_check_time': last_check.isoformat() if last_check else None,
                'next_check_time': next_check.isoformat() if next_check else None,
                'check_in_progress': service_id in self.pipeline_tasks
            }
        return status

    def get_scheduler_stats(self) -> Dict[str, Any]:
        return {
            'is_running': self.is_running,
            'total_services': len(self.definitions),
            'scheduled_services': len(self.loop_tasks),
            'running_pipelines': len(self.pipeline_tasks),
            'completed_checks': self.completed_checks,
            'discarded_results': self.discarded_results,
            'configured_services': list(self.definitions.keys())
        }
