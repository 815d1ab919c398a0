"""SLO 监控测试"""

import asyncio
import threading
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from noc_monitor.models.alert import AlertPriority, NotificationKind
from noc_monitor.models.health_check import EvidenceEntry
from noc_monitor.models.service import ServiceStatus
from noc_monitor.models.slo import (
    IndicatorType, SLOAlertSeverity, SLOAlertType, SLODefinition, SLOWindow
)
from noc_monitor.services.slo_monitor import SLOMonitor
from noc_monitor.slo.calculator import SLOCalculator
from noc_monitor.slo.repository import SLORepository
from noc_monitor.storage.evidence import InMemoryEvidenceStore
from noc_monitor.utils.exceptions import EvidenceStoreError

NOW = datetime(2024, 5, 1, 12, 0, 0)


def fill_evidence(store: InMemoryEvidenceStore, count: int, failures: int = 0,
                  end: datetime = NOW, service_id: str = 'api'):
    """写入 count 条每分钟一次的证据，最后 failures 条失败"""
    for index in range(count):
        success = index < count - failures
        store.save_evidence(EvidenceEntry(
            service_id=service_id,
            timestamp=end - timedelta(minutes=count - 1 - index),
            success=success,
            status=ServiceStatus.UP if success else ServiceStatus.DOWN,
            response_time_ms=100.0
        ))


class TestSLOMonitor:
    """SLO 监控测试类"""

    def setup_method(self):
        self.store = InMemoryEvidenceStore()
        self.definition = SLODefinition(
            id='avail', service_id='api', name='API 可用性', target=99,
            window=SLOWindow.ONE_HOUR
        )
        self.repository = SLORepository([self.definition])
        self.notifications = MagicMock()
        self.notifications.dispatch = AsyncMock(return_value={'console': True})
        self.monitor = SLOMonitor(
            SLOCalculator(), self.repository, self.store,
            notification_manager=self.notifications,
            service_names={'api': 'API 服务'}
        )

    @pytest.mark.asyncio
    async def test_evaluate_all_records_history(self):
        """测试评估结果写入状态历史"""
        fill_evidence(self.store, 30)

        statuses = await self.monitor.evaluate_all(NOW)

        assert len(statuses) == 1
        assert statuses[0].compliance
        assert statuses[0].service_name == 'API 服务'
        assert self.repository.get_latest_status('avail') is statuses[0]
        assert self.monitor.evaluation_count == 1
        self.notifications.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_violation_then_recovery(self):
        """测试违约提醒只在状态变化时发出，恢复后发出恢复提醒"""
        fill_evidence(self.store, 10, failures=5)
        await self.monitor.evaluate_all(NOW)
        await self.monitor.evaluate_all(NOW)

        alerts = self.monitor.get_recent_alerts()
        assert len(alerts) == 1
        assert alerts[0].type == SLOAlertType.VIOLATION
        assert alerts[0].severity == SLOAlertSeverity.CRITICAL

        later = NOW + timedelta(hours=2)
        fill_evidence(self.store, 30, end=later)
        await self.monitor.evaluate_all(later)

        alerts = self.monitor.get_recent_alerts()
        assert alerts[0].type == SLOAlertType.RECOVERY
        assert self.notifications.dispatch.await_count == 2

        notification = self.notifications.dispatch.await_args_list[0].args[0]
        assert notification.kind == NotificationKind.SLO
        assert notification.priority == AlertPriority.CRITICAL
        assert notification.data['slo_id'] == 'avail'

    @pytest.mark.asyncio
    async def test_failing_slo_is_isolated(self):
        """测试单个 SLO 计算失败不影响其他 SLO"""
        broken = SLODefinition(id='lat', service_id='api', name='延迟', target=90,
                               indicator=IndicatorType.LATENCY)
        self.repository.save_definition(broken)
        fill_evidence(self.store, 10)

        statuses = await self.monitor.evaluate_all(NOW)

        assert [s.slo_id for s in statuses] == ['avail']
        assert self.repository.get_latest_status('lat') is None

    @pytest.mark.asyncio
    async def test_disabled_slo_is_skipped(self):
        self.repository.save_definition(SLODefinition(
            id='off', service_id='api', name='关闭', target=99, enabled=False
        ))
        fill_evidence(self.store, 5)

        statuses = await self.monitor.evaluate_all(NOW)

        assert [s.slo_id for s in statuses] == ['avail']

    @pytest.mark.asyncio
    async def test_without_notification_manager(self):
        monitor = SLOMonitor(SLOCalculator(), self.repository, self.store)
        fill_evidence(self.store, 10, failures=5)

        await monitor.evaluate_all(NOW)

        assert len(monitor.alerts) == 1

    def test_build_alerts_risk(self):
        """测试仍达标但进入高风险时发出风险提醒"""
        calculator = SLOCalculator()
        definition = SLODefinition(id='avail', service_id='api', name='可用性', target=90,
                                   window=SLOWindow.ONE_DAY)
        store = InMemoryEvidenceStore()
        fill_evidence(store, 200)
        healthy = calculator.calculate_status(definition, store.query_evidence('api', NOW - timedelta(days=1), NOW), NOW)

        risky_store = InMemoryEvidenceStore()
        # 最近 20 条中 8 条失败：燃烧率 4，整体仍达标
        fill_evidence(risky_store, 200, failures=8)
        risky = calculator.calculate_status(
            definition, risky_store.query_evidence('api', NOW - timedelta(days=1), NOW), NOW
        )

        assert risky.compliance
        alerts = SLOMonitor.build_alerts(healthy, risky)
        assert [a.type for a in alerts] == [SLOAlertType.RISK]
        assert alerts[0].severity == SLOAlertSeverity.WARNING
        assert SLOMonitor.build_alerts(risky, risky) == []

    def test_build_alerts_first_evaluation(self):
        calculator = SLOCalculator()
        store = InMemoryEvidenceStore()
        fill_evidence(store, 10, failures=3)
        status = calculator.calculate_status(
            self.definition, store.query_evidence('api', NOW - timedelta(hours=1), NOW), NOW
        )

        alerts = SLOMonitor.build_alerts(None, status)

        assert [a.type for a in alerts] == [SLOAlertType.VIOLATION]

    @pytest.mark.asyncio
    async def test_run_and_stop(self):
        """测试周期评估循环可以停止"""
        fill_evidence(self.store, 5)
        task = asyncio.create_task(self.monitor.run(0.01))
        await asyncio.sleep(0.05)
        self.monitor.stop()
        await asyncio.wait_for(task, timeout=1)

        assert self.monitor.evaluation_count >= 1
        assert not self.monitor.is_running

    @pytest.mark.asyncio
    async def test_current_statuses(self):
        fill_evidence(self.store, 5)
        await self.monitor.evaluate_all(NOW)

        current = self.monitor.get_current_statuses()

        assert [s.slo_id for s in current] == ['avail']

    @pytest.mark.asyncio
    async def test_evaluation_runs_off_event_loop(self):
        """测试证据查询在线程池中执行"""
        fill_evidence(self.store, 5)
        threads = []
        original = self.store.query_evidence

        def recording_query(*args, **kwargs):
            threads.append(threading.get_ident())
            return original(*args, **kwargs)

        self.store.query_evidence = recording_query
        await self.monitor.evaluate_all(NOW)

        assert threads
        assert threading.get_ident() not in threads

    @pytest.mark.asyncio
    async def test_alert_history_is_bounded(self):
        monitor = SLOMonitor(SLOCalculator(), self.repository, self.store, max_alerts=2)
        for hour in range(4):
            end = NOW + timedelta(hours=hour * 2)
            # 交替违约和恢复，每轮产生一条提醒
            fill_evidence(self.store, 10, failures=5 if hour % 2 == 0 else 0, end=end)
            await monitor.evaluate_all(end)

        alerts = monitor.get_recent_alerts()
        assert len(monitor.alerts) == 2
        assert [a.type for a in alerts] == [SLOAlertType.RECOVERY, SLOAlertType.VIOLATION]

    @pytest.mark.asyncio
    async def test_evidence_pruned_once_per_day(self):
        """测试每天清理一次超出保留期的证据"""
        fill_evidence(self.store, 5, end=NOW - timedelta(days=10))
        fill_evidence(self.store, 5, end=NOW - timedelta(hours=36))
        fill_evidence(self.store, 5)
        monitor = SLOMonitor(SLOCalculator(), self.repository, self.store,
                             evidence_retention_days=2)

        await monitor.evaluate_all(NOW)

        assert self.store.count('api') == 10
        assert monitor.last_pruned == NOW

        await monitor.evaluate_all(NOW + timedelta(hours=20))
        assert self.store.count('api') == 10
        assert monitor.last_pruned == NOW

        await monitor.evaluate_all(NOW + timedelta(days=1))
        assert self.store.count('api') == 5

    @pytest.mark.asyncio
    async def test_prune_failure_does_not_stop_evaluation(self):
        store = MagicMock(wraps=self.store)
        store.prune.side_effect = EvidenceStoreError("磁盘已满")
        monitor = SLOMonitor(SLOCalculator(), self.repository, store)
        fill_evidence(self.store, 5)

        statuses = await monitor.evaluate_all(NOW)

        assert len(statuses) == 1
        assert monitor.evaluation_count == 1
        store.prune.assert_called_once()

    @pytest.mark.asyncio
    async def test_retention_disabled(self):
        fill_evidence(self.store, 5, end=NOW - timedelta(days=400))
        monitor = SLOMonitor(SLOCalculator(), self.repository, self.store,
                             evidence_retention_days=None)

        await monitor.evaluate_all(NOW)

        assert self.store.count('api') == 5
        assert monitor.last_pruned is None
