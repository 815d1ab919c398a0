"""统计管理器模块

维护每个服务的累计统计和有界检查历史
"""

import json
import logging
import os
import time
from collections import deque
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Deque, Dict, List, Optional, Any

from ..models.health_check import CheckResult, ServiceStatistics
from ..models.service import ServiceStatus


class StatisticsManager:
    """统计管理器

    每个检查结果对统计做一次增量更新，不从历史重新计算。
    对外返回的统计和历史都是副本。
    """

    def __init__(self, history_size: int = 100, persistence_file: Optional[str] = None,
                 save_interval: float = 30.0):
        """初始化统计管理器

        Args:
            history_size: 每个服务保留的检查历史数量，超出后丢弃最旧记录
            persistence_file: 统计持久化文件路径，为None则不持久化
            save_interval: 两次写文件之间的最短间隔秒数，期间的更新在下次写入或flush时落盘
        """
        if history_size <= 0:
            raise ValueError("history_size 必须是正整数")

        self.history_size = history_size
        self.persistence_file = persistence_file
        self.save_interval = save_interval
        self._last_saved: Optional[float] = None
        self._dirty = False
        self.statistics: Dict[str, ServiceStatistics] = {}
        self.history: Dict[str, Deque[CheckResult]] = {}
        self.logger = logging.getLogger(__name__)

        if self.persistence_file:
            self._load_statistics()

    def record(self, result: CheckResult) -> ServiceStatistics:
        """记录一个检查结果

        Args:
            result: 检查结果

        Returns:
            更新后的统计副本
        """
        service_id = result.service_id
        stats = self.statistics.get(service_id)
        if stats is None:
            stats = ServiceStatistics(service_id=service_id, service_name=result.service_name)
            self.statistics[service_id] = stats

        previous_status = stats.last_status

        stats.total_checks += 1
        if result.success:
            stats.successful_checks += 1
        else:
            stats.failed_checks += 1
        stats.uptime = stats.successful_checks / stats.total_checks * 100

        # 增量均值
        stats.average_response_time += (
            (result.response_time_ms - stats.average_response_time) / stats.total_checks
        )
        if stats.min_response_time is None or result.response_time_ms < stats.min_response_time:
            stats.min_response_time = result.response_time_ms
        if stats.max_response_time is None or result.response_time_ms > stats.max_response_time:
            stats.max_response_time = result.response_time_ms

        if result.service_name:
            stats.service_name = result.service_name
        stats.last_status = result.status
        stats.last_check = result.timestamp

        was_failing = previous_status in (ServiceStatus.DOWN, ServiceStatus.DEGRADED)
        if not result.success and not was_failing:
            stats.last_downtime = result.timestamp
            stats.last_downtime_duration = None
        elif result.success and was_failing and stats.last_downtime is not None:
            stats.last_downtime_duration = (
                (result.timestamp - stats.last_downtime).total_seconds() / 60
            )

        if previous_status != result.status and previous_status != ServiceStatus.UNKNOWN:
            self.logger.warning(
                f"服务 {service_id} 状态变化: {previous_status.value} -> {result.status.value}"
            )

        history = self.history.get(service_id)
        if history is None:
            history = deque(maxlen=self.history_size)
            self.history[service_id] = history
        history.append(result)

        if self.persistence_file:
            self._dirty = True
            now = time.monotonic()
            if self._last_saved is None or now - self._last_saved >= self.save_interval:
                self._save_statistics()

        return replace(stats)

    def flush(self) -> None:
        """把尚未落盘的统计写入文件"""
        if self.persistence_file and self._dirty:
            self._save_statistics()

    def record_skipped_tick(self, service_id: str) -> None:
        """记录一次因上次检查未完成而跳过的调度"""
        stats = self.statistics.get(service_id)
        if stats is None:
            stats = ServiceStatistics(service_id=service_id)
            self.statistics[service_id] = stats
        stats.skipped_ticks += 1

    def get_statistics(self, service_id: str) -> Optional[ServiceStatistics]:
        """获取服务统计副本"""
        stats = self.statistics.get(service_id)
        return replace(stats) if stats else None

    def get_all_statistics(self) -> Dict[str, ServiceStatistics]:
        return {service_id: replace(stats) for service_id, stats in self.statistics.items()}

    def get_history(self, service_id: str, limit: Optional[int] = None) -> List[CheckResult]:
        """获取检查历史

        Args:
            service_id: 服务ID
            limit: 最多返回的记录数

        Returns:
            按时间倒序的检查结果列表
        """
        history = list(reversed(self.history.get(service_id, ())))
        if limit:
            history = history[:limit]
        return history

    def remove_service(self, service_id: str) -> None:
        """移除服务的统计和历史"""
        self.statistics.pop(service_id, None)
        self.history.pop(service_id, None)

    def get_summary(self) -> Dict[str, Any]:
        """全部服务的汇总信息"""
        total = len(self.statistics)
        up = sum(1 for s in self.statistics.values() if s.last_status == ServiceStatus.UP)
        down = sum(1 for s in self.statistics.values() if s.last_status == ServiceStatus.DOWN)
        degraded = sum(
            1 for s in self.statistics.values() if s.last_status == ServiceStatus.DEGRADED
        )
        uptimes = [s.uptime for s in self.statistics.values() if s.total_checks > 0]
        return {
            'total_services': total,
            'up': up,
            'down': down,
            'degraded': degraded,
            'unknown': total - up - down - degraded,
            'average_uptime': sum(uptimes) / len(uptimes) if uptimes else 100.0
        }

    def _save_statistics(self):
        """保存统计到文件"""
        self._last_saved = time.monotonic()
        try:
            Path(self.persistence_file).parent.mkdir(parents=True, exist_ok=True)
            data = {
                'last_updated': datetime.now().isoformat(),
                'statistics': [stats.to_dict() for stats in self.statistics.values()]
            }
            with open(self.persistence_file, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            self._dirty = False
        except Exception as e:
            self.logger.error(f"保存统计失败: {e}")

    def _load_statistics(self):
        """从文件加载统计"""
        if not os.path.exists(self.persistence_file):
            return

        try:
            with open(self.persistence_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            for item in data.get('statistics', []):
                stats = ServiceStatistics(
                    service_id=item['service_id'],
                    service_name=item.get('service_name', ''),
                    total_checks=item.get('total_checks', 0),
                    successful_checks=item.get('successful_checks', 0),
                    failed_checks=item.get('failed_checks', 0),
                    uptime=item.get('uptime', 100.0),
                    average_response_time=item.get('average_response_time', 0.0),
                    min_response_time=item.get('min_response_time'),
                    max_response_time=item.get('max_response_time'),
                    last_status=ServiceStatus(item.get('last_status', 'unknown')),
                    last_check=_parse_time(item.get('last_check')),
                    last_downtime=_parse_time(item.get('last_downtime')),
                    last_downtime_duration=item.get('last_downtime_duration'),
                    skipped_ticks=item.get('skipped_ticks', 0)
                )
                self.statistics[stats.service_id] = stats

            self.logger.info(f"从 {self.persistence_file} 加载了 {len(self.statistics)} 个服务的统计")

        except Exception as e:
            self.logger.error(f"加载统计失败: {e}")


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None
