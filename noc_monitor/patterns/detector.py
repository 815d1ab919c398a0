"""模式检测器

在每个服务的滑动检查历史上检测渐进性能退化、间歇性故障和按小时重复出现的故障，
并给出响应时间趋势。检测与告警链路相互独立。
"""

import logging
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional, Sequence

from ..models.health_check import CheckResult
from ..models.pattern import (
    DetectedPattern, MetricTrend, PatternDetectionConfig, PatternSeverity, PatternType
)

MIN_POINTS_FOR_ANALYSIS = 10
MIN_POINTS_FOR_TREND = 20
DEGRADATION_SAMPLE = 20
INTERMITTENT_SAMPLE = 30


class PatternDetector:
    """模式检测器"""

    def __init__(self, config: Optional[PatternDetectionConfig] = None):
        """
        Args:
            config: 检测配置，历史容量为 time_window_minutes 的两倍
        """
        self.config = config or PatternDetectionConfig()
        self.history_capacity = max(MIN_POINTS_FOR_ANALYSIS, self.config.time_window_minutes * 2)
        self.history: Dict[str, Deque[CheckResult]] = {}
        self.detected_patterns: Dict[str, List[DetectedPattern]] = defaultdict(list)
        self.service_names: Dict[str, str] = {}
        self.logger = logging.getLogger(__name__)

    def add_check_result(self, result: CheckResult) -> None:
        """加入一个检查结果，超出容量时丢弃最旧的记录"""
        history = self.history.get(result.service_id)
        if history is None:
            history = deque(maxlen=self.history_capacity)
            self.history[result.service_id] = history
        history.append(result)
        if result.service_name:
            self.service_names[result.service_id] = result.service_name

    def is_enabled(self, pattern_type: PatternType) -> bool:
        return pattern_type.value in self.config.enabled_patterns

    def analyze_patterns(self, service_id: str) -> List[DetectedPattern]:
        """
        分析服务的检查历史

        Args:
            service_id: 服务ID

        Returns:
            本次检测到的模式，历史不足 10 条或检测关闭时为空列表
        """
        if not self.config.enabled:
            return []

        history = list(self.history.get(service_id, ()))
        if len(history) < MIN_POINTS_FOR_ANALYSIS:
            return []

        service_name = self.service_names.get(service_id, '')
        patterns: List[DetectedPattern] = []

        if self.is_enabled(PatternType.PROGRESSIVE_DEGRADATION):
            pattern = self._detect_progressive_degradation(service_id, service_name, history)
            if pattern:
                patterns.append(pattern)

        if self.is_enabled(PatternType.INTERMITTENT_FAILURES):
            pattern = self._detect_intermittent_failures(service_id, service_name, history)
            if pattern:
                patterns.append(pattern)

        if self.is_enabled(PatternType.RECURRING_DOWNTIME):
            patterns.extend(self._detect_recurring_downtime(service_id, service_name, history))

        if not patterns:
            self.detected_patterns.pop(service_id, None)
            return patterns

        # 同一模式再次出现时沿用原ID和通知状态
        previous = {p.key: p for p in self.detected_patterns.get(service_id, [])}
        self.detected_patterns[service_id] = patterns
        for pattern in patterns:
            earlier = previous.get(pattern.key)
            if earlier is not None:
                pattern.id = earlier.id
                pattern.notified = earlier.notified
                self.logger.debug(f"服务 {service_id} 的模式 {pattern.type.value} 仍然存在")
                continue
            self.logger.warning(
                f"服务 {service_id} 检测到模式 {pattern.type.value} "
                f"(严重程度: {pattern.severity.value}, 置信度: {pattern.confidence:.0f}): "
                f"{pattern.description}"
            )

        return patterns

    def analyze_all(self) -> Dict[str, List[DetectedPattern]]:
        """分析所有服务，只返回有检测结果的服务"""
        results = {}
        for service_id in list(self.history):
            patterns = self.analyze_patterns(service_id)
            if patterns:
                results[service_id] = patterns
        return results

    def _detect_progressive_degradation(self, service_id: str, service_name: str,
                                        history: List[CheckResult]) -> Optional[DetectedPattern]:
        recent = history[-DEGRADATION_SAMPLE:]
        first_avg, second_avg = _split_averages(recent)
        if first_avg <= 0:
            return None

        increase = (second_avg - first_avg) / first_avg * 100
        if increase <= 50:
            return None

        return DetectedPattern(
            type=PatternType.PROGRESSIVE_DEGRADATION,
            severity=PatternSeverity.HIGH if increase > 100 else PatternSeverity.MEDIUM,
            service_id=service_id,
            service_name=service_name,
            description=(f"响应时间持续上升: 从 {first_avg:.0f}ms 到 {second_avg:.0f}ms "
                         f"(增长 {increase:.1f}%)"),
            confidence=min(increase, 100.0),
            events_analyzed=len(recent),
            details={
                'time_window_minutes': self.config.time_window_minutes,
                'previous_average': first_avg,
                'current_average': second_avg,
                'increase_percentage': increase
            },
            recommendations=[
                '检查服务器资源（CPU、内存、磁盘）',
                '排查最近的发布或配置变更',
                '如果趋势持续，考虑扩容',
            ]
        )

    def _detect_intermittent_failures(self, service_id: str, service_name: str,
                                      history: List[CheckResult]) -> Optional[DetectedPattern]:
        recent = history[-INTERMITTENT_SAMPLE:]
        failures = sum(1 for r in recent if not r.success)
        if failures < 3 or failures >= len(recent) * 0.3:
            return None

        longest_run = 0
        run = 0
        for result in recent:
            run = run + 1 if not result.success else 0
            longest_run = max(longest_run, run)
        # 连续 3 次以上失败属于宕机而不是抖动
        if longest_run >= 3:
            return None

        failure_rate = failures / len(recent) * 100
        return DetectedPattern(
            type=PatternType.INTERMITTENT_FAILURES,
            severity=PatternSeverity.HIGH if failure_rate > 20 else PatternSeverity.MEDIUM,
            service_id=service_id,
            service_name=service_name,
            description=(f"检测到间歇性故障: {len(recent)} 次检查中失败 {failures} 次 "
                         f"(失败率 {failure_rate:.1f}%)"),
            confidence=min(failure_rate * 3, 100.0),
            events_analyzed=len(recent),
            details={
                'time_window_minutes': self.config.time_window_minutes,
                'total_failures': failures,
                'failure_rate': failure_rate,
                'max_consecutive_failures': longest_run
            },
            recommendations=[
                '检查网络稳定性',
                '检查负载均衡配置',
                '排查超时设置',
                '确认是否触发了限流',
            ]
        )

    def _detect_recurring_downtime(self, service_id: str, service_name: str,
                                   history: List[CheckResult]) -> List[DetectedPattern]:
        totals: Dict[int, int] = defaultdict(int)
        failures: Dict[int, int] = defaultdict(int)
        for result in history:
            hour = result.timestamp.hour
            totals[hour] += 1
            if not result.success:
                failures[hour] += 1

        patterns = []
        for hour in sorted(failures):
            count = failures[hour]
            if count < 3:
                continue
            failure_rate = count / totals[hour] * 100
            if failure_rate <= 50:
                continue

            patterns.append(DetectedPattern(
                type=PatternType.RECURRING_DOWNTIME,
                severity=PatternSeverity.MEDIUM,
                service_id=service_id,
                service_name=service_name,
                description=(f"每天 {hour}:00 时段重复出现故障 "
                             f"(失败 {count} 次, 失败率 {failure_rate:.1f}%)"),
                confidence=min(failure_rate, 100.0),
                events_analyzed=len(history),
                details={
                    'time_window_minutes': self.config.time_window_minutes,
                    'recurring_hour': hour,
                    'failures_at_hour': count,
                    'failure_rate': failure_rate
                },
                recommendations=[
                    f'检查 {hour}:00 运行的定时任务',
                    '检查备份进程',
                    '确认是否处于维护窗口',
                    '排查 cron 或批处理作业',
                ]
            ))
        return patterns

    def calculate_trend(self, service_id: str) -> Optional[MetricTrend]:
        """
        计算最近 20 次检查的响应时间趋势

        Returns:
            MetricTrend，历史不足 20 条时返回None
        """
        history = list(self.history.get(service_id, ()))
        if len(history) < MIN_POINTS_FOR_TREND:
            return None

        first_avg, second_avg = _split_averages(history[-MIN_POINTS_FOR_TREND:])
        change_rate = (second_avg - first_avg) / first_avg * 100 if first_avg > 0 else 0.0

        direction = 'stable'
        if abs(change_rate) > 10:
            direction = 'increasing' if change_rate > 0 else 'decreasing'

        concern_level = 'none'
        if direction == 'increasing':
            if change_rate > 50:
                concern_level = 'high'
            elif change_rate > 25:
                concern_level = 'medium'
            else:
                concern_level = 'low'

        return MetricTrend(
            service_id=service_id,
            direction=direction,
            change_rate=change_rate,
            current_value=second_avg,
            previous_value=first_avg,
            prediction=second_avg + (second_avg - first_avg),
            concern_level=concern_level,
            time_window_minutes=self.config.time_window_minutes
        )

    def get_detected_patterns(self, service_id: Optional[str] = None) -> List[DetectedPattern]:
        """获取最近一次分析检测到的模式"""
        if service_id is not None:
            return list(self.detected_patterns.get(service_id, []))
        return [p for patterns in self.detected_patterns.values() for p in patterns]

    def get_unnotified_patterns(self) -> List[DetectedPattern]:
        return [p for p in self.get_detected_patterns() if not p.notified]

    def mark_as_notified(self, pattern_id: str) -> bool:
        for patterns in self.detected_patterns.values():
            for pattern in patterns:
                if pattern.id == pattern_id:
                    pattern.notified = True
                    return True
        return False

    def remove_service(self, service_id: str) -> None:
        self.history.pop(service_id, None)
        self.detected_patterns.pop(service_id, None)
        self.service_names.pop(service_id, None)


def _split_averages(results: Sequence[CheckResult]):
    """把样本按长度分成前后两半，返回两半的平均响应时间"""
    half = len(results) // 2
    return _average(results[:half]), _average(results[half:])


def _average(results: Sequence[CheckResult]) -> float:
    if not results:
        return 0.0
    return sum(r.response_time_ms for r in results) / len(results)
