"""SLO 计算器

根据 SLO 定义和窗口内的探测证据计算达标情况、错误预算、燃烧率和违约风险。
计算器不保存任何状态，相同输入得到相同输出。
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from ..models.health_check import EvidenceEntry
from ..models.service import ServiceStatus
from ..models.slo import (
    WINDOW_MINUTES, IndicatorType, SLODefinition, SLOStatus, SLOWindow, TimeWindow,
    ViolationRisk
)
from ..utils.exceptions import SLOError

DEFAULT_BURN_RATE_CEILING = 999.0
DEFAULT_BURN_RATE_SAMPLE_SIZE = 20


class SLOCalculator:
    """SLO 计算器"""

    def __init__(self, burn_rate_ceiling: float = DEFAULT_BURN_RATE_CEILING,
                 burn_rate_sample_size: int = DEFAULT_BURN_RATE_SAMPLE_SIZE):
        """
        Args:
            burn_rate_ceiling: 燃烧率上限；允许错误为 0 而近期有错误时取该值
            burn_rate_sample_size: 计算燃烧率时使用的最近证据数量
        """
        if burn_rate_ceiling <= 0:
            raise SLOError(f"burn_rate_ceiling 必须为正数: {burn_rate_ceiling}")
        if burn_rate_sample_size <= 0:
            raise SLOError(f"burn_rate_sample_size 必须为正整数: {burn_rate_sample_size}")
        self.burn_rate_ceiling = burn_rate_ceiling
        self.burn_rate_sample_size = burn_rate_sample_size

    @staticmethod
    def parse_time_window(window: SLOWindow, end: datetime) -> TimeWindow:
        """将窗口标识转换为具体时间范围"""
        total_minutes = WINDOW_MINUTES[SLOWindow(window)]
        return TimeWindow(
            start=end - timedelta(minutes=total_minutes),
            end=end,
            total_minutes=total_minutes
        )

    def calculate_status(self, definition: SLODefinition, evidence: Sequence[EvidenceEntry],
                         as_of: Optional[datetime] = None,
                         service_name: str = '') -> SLOStatus:
        """
        计算 SLO 状态

        Args:
            definition: SLO 定义
            evidence: 服务的探测证据，窗口外的记录会被忽略
            as_of: 评估时间点，窗口的结束时间；为None时取最新证据的时间
            service_name: 服务名称

        Returns:
            SLOStatus: 状态快照，数值保留两位小数
        """
        if as_of is None:
            as_of = max((e.timestamp for e in evidence), default=None) or datetime.now()

        window = self.parse_time_window(definition.window, as_of)
        in_window = sorted(
            (e for e in evidence
             if e.service_id == definition.service_id and window.start <= e.timestamp <= window.end),
            key=lambda e: e.timestamp
        )

        current_value = self._indicator_value(definition, in_window)
        compliance = current_value >= definition.target

        budget_total = (100 - definition.target) / 100 * window.total_minutes
        budget_used = (100 - current_value) / 100 * window.total_minutes
        budget_remaining = max(0.0, budget_total - budget_used)
        used_percent = budget_used / budget_total * 100 if budget_total > 0 else 0.0

        burn_rate = self._burn_rate(definition, in_window)
        risk = self.assess_risk(compliance, burn_rate, used_percent)

        return SLOStatus(
            slo_id=definition.id,
            slo_name=definition.name,
            service_id=definition.service_id,
            service_name=service_name,
            current_value=round(current_value, 2),
            target=definition.target,
            compliance=compliance,
            error_budget_total=round(budget_total, 2),
            error_budget_used=round(budget_used, 2),
            error_budget_remaining=round(budget_remaining, 2),
            error_budget_used_percent=round(used_percent, 2),
            burn_rate=round(burn_rate, 2),
            violation_risk=risk,
            window=SLOWindow(definition.window),
            indicator=IndicatorType(definition.indicator),
            evidence_count=len(in_window),
            calculated_at=as_of
        )

    def _indicator_value(self, definition: SLODefinition,
                         evidence: Sequence[EvidenceEntry]) -> float:
        if not evidence:
            return 100.0

        total = len(evidence)
        indicator = IndicatorType(definition.indicator)

        if indicator == IndicatorType.AVAILABILITY:
            successful = sum(1 for e in evidence if e.success)
            return successful / total * 100

        if indicator == IndicatorType.LATENCY:
            if definition.threshold is None:
                raise SLOError("延迟类 SLO 必须配置 threshold", slo_id=definition.id)
            within = sum(1 for e in evidence if e.response_time_ms <= definition.threshold)
            return within / total * 100

        failed = sum(
            1 for e in evidence
            if not e.success or e.status in (ServiceStatus.DOWN, ServiceStatus.DEGRADED)
        )
        return 100 - failed / total * 100

    def _burn_rate(self, definition: SLODefinition, evidence: Sequence[EvidenceEntry]) -> float:
        recent = list(evidence)[-self.burn_rate_sample_size:]
        if not recent:
            return 0.0

        recent_error = (100 - self._indicator_value(definition, recent)) / 100
        allowed_error = (100 - definition.target) / 100

        if allowed_error <= 0:
            return self.burn_rate_ceiling if recent_error > 0 else 0.0
        return min(recent_error / allowed_error, self.burn_rate_ceiling)

    @staticmethod
    def assess_risk(compliance: bool, burn_rate: float, used_percent: float) -> ViolationRisk:
        """按优先级判定违约风险"""
        if not compliance:
            return ViolationRisk.CRITICAL
        if burn_rate > 5 and used_percent > 50:
            return ViolationRisk.CRITICAL
        if burn_rate > 3 or used_percent > 90:
            return ViolationRisk.HIGH
        if burn_rate > 2 or used_percent > 70:
            return ViolationRisk.MEDIUM
        if burn_rate > 1.5 or used_percent > 50:
            return ViolationRisk.LOW
        return ViolationRisk.NONE

    @staticmethod
    def calculate_aggregated_stats(statuses: List[SLOStatus]) -> Dict[str, Any]:
        """多个 SLO 的汇总统计"""
        total = len(statuses)
        if total == 0:
            return {
                'total_slos': 0,
                'compliant_slos': 0,
                'violated_slos': 0,
                'compliance_rate': 100.0,
                'average_compliance': 100.0,
                'average_error_budget_used_percent': 0.0,
                'at_risk': 0
            }

        compliant = sum(1 for s in statuses if s.compliance)
        return {
            'total_slos': total,
            'compliant_slos': compliant,
            'violated_slos': total - compliant,
            'compliance_rate': round(compliant / total * 100, 2),
            'average_compliance': round(sum(s.current_value for s in statuses) / total, 2),
            'average_error_budget_used_percent': round(
                sum(s.error_budget_used_percent for s in statuses) / total, 2
            ),
            'at_risk': sum(
                1 for s in statuses
                if s.violation_risk in (ViolationRisk.HIGH, ViolationRisk.CRITICAL)
            )
        }
