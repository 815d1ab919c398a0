"""告警升级定时器

每个故障中的服务最多一个升级定时器。定时器到点后重新读取告警引擎中的
健康状态再决定是否升级，服务恢复时由告警集成器取消定时器。
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional

from .engine import AlertingEngine
from ..models.alert import EscalationDecision
from ..models.service import EscalationPolicy

EscalationCallback = Callable[[str, EscalationPolicy, EscalationDecision], Awaitable[None]]


class EscalationScheduler:
    """升级定时器管理"""

    def __init__(self, engine: AlertingEngine, on_escalation: EscalationCallback):
        """
        Args:
            engine: 告警引擎
            on_escalation: 确认需要升级后调用的协程函数
        """
        self.engine = engine
        self.on_escalation = on_escalation
        self.timers: Dict[str, asyncio.Task] = {}
        self.logger = logging.getLogger(__name__)

    def arm(self, service_id: str, policy: Optional[EscalationPolicy]) -> bool:
        """
        为服务启动升级定时器，已有定时器时不重复启动

        Returns:
            bool: 是否新启动了定时器
        """
        if policy is None or not policy.enabled:
            return False

        existing = self.timers.get(service_id)
        if existing is not None and not existing.done():
            return False

        task = asyncio.create_task(self._run_timer(service_id, policy))
        self.timers[service_id] = task
        task.add_done_callback(lambda t, sid=service_id: self._on_timer_done(sid, t))
        self.logger.debug(f"服务 {service_id} 升级定时器已启动 ({policy.after_minutes} 分钟)")
        return True

    def cancel(self, service_id: str) -> bool:
        """取消服务的升级定时器"""
        task = self.timers.pop(service_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        self.logger.debug(f"服务 {service_id} 升级定时器已取消")
        return True

    async def cancel_all(self) -> None:
        tasks = list(self.timers.values())
        self.timers.clear()
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def is_armed(self, service_id: str) -> bool:
        task = self.timers.get(service_id)
        return task is not None and not task.done()

    async def _run_timer(self, service_id: str, policy: EscalationPolicy) -> None:
        after = timedelta(minutes=float(policy.after_minutes))
        while True:
            state = self.engine.get_health_state(service_id)
            if state is None or state.downtime_started is None or state.has_active_escalation:
                return

            delay = (state.downtime_started + after - datetime.now()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
                # 到点后重新读取状态，期间可能已恢复或开始了新的故障
                continue

            decision = self.engine.check_escalation(service_id, policy)
            if decision.needs_escalation:
                await self.on_escalation(service_id, policy, decision)
            return

    def _on_timer_done(self, service_id: str, task: asyncio.Task) -> None:
        if self.timers.get(service_id) is task:
            self.timers.pop(service_id, None)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error(f"服务 {service_id} 升级定时器异常: {task.exception()}")
