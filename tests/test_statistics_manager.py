"""统计管理器测试"""

import json
import os
import tempfile
from datetime import datetime, timedelta

import pytest

from noc_monitor.models.health_check import CheckResult
from noc_monitor.models.service import ServiceStatus
from noc_monitor.services.statistics_manager import StatisticsManager

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0)


def make_result(success: bool, response_time: float = 100.0, minutes: float = 0,
                service_id: str = 'api') -> CheckResult:
    return CheckResult(
        service_id=service_id,
        service_name='API',
        success=success,
        status=ServiceStatus.UP if success else ServiceStatus.DOWN,
        response_time_ms=response_time,
        message='ok' if success else 'failed',
        timestamp=BASE_TIME + timedelta(minutes=minutes)
    )


class TestStatisticsManager:
    """统计管理器测试类"""

    def setup_method(self):
        self.manager = StatisticsManager(history_size=5)

    def test_invalid_history_size(self):
        """测试非法的历史容量"""
        with pytest.raises(ValueError):
            StatisticsManager(history_size=0)

    def test_uptime_matches_recomputation(self):
        """测试增量计算的可用率与重新计算一致"""
        outcomes = [True, False, True, True, False, False, True, True, True, False]
        successes = 0
        for index, outcome in enumerate(outcomes, start=1):
            stats = self.manager.record(make_result(outcome, minutes=index))
            successes += outcome
            assert stats.total_checks == index
            assert stats.successful_checks == successes
            assert stats.failed_checks == index - successes
            assert stats.uptime == pytest.approx(successes / index * 100)

    def test_running_mean_and_extremes(self):
        """测试响应时间的增量均值和最值"""
        times = [100.0, 300.0, 200.0, 50.0]
        for index, value in enumerate(times):
            self.manager.record(make_result(True, response_time=value, minutes=index))

        stats = self.manager.get_statistics('api')
        assert stats.average_response_time == pytest.approx(sum(times) / len(times))
        assert stats.min_response_time == 50.0
        assert stats.max_response_time == 300.0

    def test_downtime_tracking(self):
        """测试故障开始时间和持续时长"""
        self.manager.record(make_result(True, minutes=0))
        self.manager.record(make_result(False, minutes=1))
        self.manager.record(make_result(False, minutes=2))
        stats = self.manager.record(make_result(True, minutes=6))

        assert stats.last_downtime == BASE_TIME + timedelta(minutes=1)
        assert stats.last_downtime_duration == pytest.approx(5.0)
        assert stats.last_status == ServiceStatus.UP

    def test_history_is_bounded_and_newest_first(self):
        """测试历史容量和倒序返回"""
        for index in range(8):
            self.manager.record(make_result(True, response_time=index, minutes=index))

        history = self.manager.get_history('api')
        assert len(history) == 5
        assert [r.response_time_ms for r in history] == [7, 6, 5, 4, 3]
        assert len(self.manager.get_history('api', limit=2)) == 2

    def test_returns_snapshot(self):
        """测试返回的统计是副本"""
        self.manager.record(make_result(True))
        snapshot = self.manager.get_statistics('api')
        snapshot.total_checks = 999

        assert self.manager.get_statistics('api').total_checks == 1

    def test_skipped_ticks(self):
        """测试跳过的调度计数"""
        self.manager.record_skipped_tick('api')
        self.manager.record_skipped_tick('api')

        assert self.manager.get_statistics('api').skipped_ticks == 2

    def test_summary(self):
        """测试汇总信息"""
        self.manager.record(make_result(True, service_id='a'))
        self.manager.record(make_result(False, service_id='b'))

        summary = self.manager.get_summary()
        assert summary['total_services'] == 2
        assert summary['up'] == 1
        assert summary['down'] == 1
        assert summary['average_uptime'] == pytest.approx(50.0)

    def test_remove_service(self):
        self.manager.record(make_result(True))
        self.manager.remove_service('api')

        assert self.manager.get_statistics('api') is None
        assert self.manager.get_history('api') == []

    def test_persistence_round_trip(self):
        """测试统计持久化和重新加载"""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, 'stats', 'statistics.json')
            manager = StatisticsManager(persistence_file=path)
            manager.record(make_result(True, response_time=120))
            manager.record(make_result(False, response_time=80, minutes=1))
            manager.flush()

            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            assert data['statistics'][0]['service_id'] == 'api'

            reloaded = StatisticsManager(persistence_file=path)
            stats = reloaded.get_statistics('api')
            assert stats.total_checks == 2
            assert stats.failed_checks == 1
            assert stats.last_status == ServiceStatus.DOWN
            assert stats.last_downtime == BASE_TIME + timedelta(minutes=1)

    def test_persistence_throttled_until_flush(self):
        """测试保存间隔内的更新只在flush时写入文件"""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, 'statistics.json')
            manager = StatisticsManager(persistence_file=path, save_interval=3600)
            manager.record(make_result(True))
            manager.record(make_result(True, minutes=1))
            manager.record(make_result(False, minutes=2))

            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            assert data['statistics'][0]['total_checks'] == 1

            manager.flush()

            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            assert data['statistics'][0]['total_checks'] == 3
            assert data['statistics'][0]['failed_checks'] == 1

    def test_persistence_without_throttle(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, 'statistics.json')
            manager = StatisticsManager(persistence_file=path, save_interval=0)
            manager.record(make_result(True))
            manager.record(make_result(False, minutes=1))

            reloaded = StatisticsManager(persistence_file=path)
            assert reloaded.get_statistics('api').total_checks == 2
