"""智能告警引擎

按服务维护健康状态和冷却期记忆，针对每个检查结果决定：
立即告警、因冷却期抑制、处于重试宽限期，或发送恢复通知。
引擎本身是同步的，不抛出异常。
"""

import logging
from collections import deque
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional, Tuple

from ..models.alert import (
    AlertDecision, AlertPriority, AlertRecord, AlertStatus, AlertType,
    CooldownState, EscalationDecision, ServiceHealthState
)
from ..models.health_check import CheckResult
from ..models.service import AlertPolicy, CooldownPolicy, EscalationPolicy, ServiceStatus

DEFAULT_ALERT_POLICY = AlertPolicy()


class AlertingEngine:
    """告警状态机"""

    def __init__(self, history_size: int = 100):
        """
        Args:
            history_size: 每个服务保留的告警记录数量
        """
        self.history_size = history_size
        self.health_states: Dict[str, ServiceHealthState] = {}
        self.cooldown_states: Dict[str, CooldownState] = {}
        self.alert_history: Dict[str, Deque[AlertRecord]] = {}
        self.logger = logging.getLogger(__name__)

    def evaluate(self, result: CheckResult, policy: Optional[AlertPolicy] = None) -> AlertDecision:
        """
        处理一个检查结果并给出告警决策

        Args:
            result: 检查结果
            policy: 服务告警策略，为None时使用默认策略

        Returns:
            AlertDecision: 告警决策
        """
        try:
            state = self._update_health_state(result)

            if policy is None:
                policy = DEFAULT_ALERT_POLICY

            if not policy.enabled:
                return AlertDecision(should_send=False, reason='服务告警已禁用')

            if result.success:
                return self._handle_recovery(state, result, policy)
            return self._handle_failure(state, result, policy)

        except Exception as e:
            self.logger.error(f"告警评估失败 (服务: {result.service_id}): {e}", exc_info=True)
            return AlertDecision(should_send=False, reason=f'告警评估异常: {e}')

    def _update_health_state(self, result: CheckResult) -> ServiceHealthState:
        state = self.health_states.get(result.service_id)
        if state is None:
            state = ServiceHealthState(service_id=result.service_id)
            self.health_states[result.service_id] = state

        previous_status = state.current_status
        state.previous_status = previous_status
        state.current_status = result.status
        state.last_check = result.timestamp

        if result.success:
            state.consecutive_successes += 1
            state.consecutive_failures = 0
            state.is_retrying = False
            if state.downtime_started is not None:
                state.downtime_duration_minutes = (
                    (result.timestamp - state.downtime_started).total_seconds() / 60
                )
                state.downtime_started = None
                # 升级状态只在恢复时清除
                state.has_active_escalation = False
        else:
            state.consecutive_failures += 1
            state.consecutive_successes = 0
            if state.downtime_started is None:
                state.downtime_started = result.timestamp

        if previous_status != state.current_status:
            state.last_state_change = result.timestamp

        return state

    def _handle_recovery(self, state: ServiceHealthState, result: CheckResult,
                         policy: AlertPolicy) -> AlertDecision:
        if state.previous_status != ServiceStatus.DOWN:
            return AlertDecision(should_send=False, reason='服务正常，无需告警')

        if not policy.notify_on_recovery:
            return AlertDecision(should_send=False, reason='服务已恢复，未开启恢复通知')

        record = self._create_record(result, AlertType.RECOVERED, AlertStatus.PENDING)
        record.metadata['downtime_minutes'] = state.downtime_duration_minutes
        self.cooldown_states.pop(result.service_id, None)
        self._save_record(record)

        self.logger.info(f"服务 {result.service_id} 已恢复，生成恢复告警 {record.id}")
        return AlertDecision(should_send=True, alert_record=record)

    def _handle_failure(self, state: ServiceHealthState, result: CheckResult,
                        policy: AlertPolicy) -> AlertDecision:
        retry_attempts = self._safe_int(policy.retry.attempts if policy.retry else 0, 'retry.attempts')
        if state.consecutive_failures <= retry_attempts:
            state.is_retrying = True
            return AlertDecision(
                should_send=False,
                reason=f'重试中 ({state.consecutive_failures}/{retry_attempts})'
            )
        state.is_retrying = False

        alert_type = self._determine_type(result)
        now = result.timestamp

        suppressed, reason = self._check_cooldown(result.service_id, policy.cooldown, now)
        if suppressed:
            record = self._create_record(result, alert_type, AlertStatus.SUPPRESSED)
            record.metadata.update({
                'suppressed_by_cooldown': True,
                'suppression_reason': reason,
                'retry_attempts': state.consecutive_failures
            })
            self._save_record(record)
            self.logger.debug(f"服务 {result.service_id} 告警被抑制: {reason}")
            return AlertDecision(should_send=False, reason=reason, alert_record=record)

        record = self._create_record(result, alert_type, AlertStatus.PENDING)
        record.metadata['retry_attempts'] = state.consecutive_failures
        self._update_cooldown(result.service_id, policy.cooldown, now)
        self._save_record(record)

        self.logger.info(
            f"服务 {result.service_id} 触发告警: 类型={alert_type.value}, "
            f"优先级={record.priority.value}"
        )
        return AlertDecision(should_send=True, alert_record=record)

    def _check_cooldown(self, service_id: str, cooldown: Optional[CooldownPolicy],
                        now: datetime) -> Tuple[bool, Optional[str]]:
        """
        判断是否处于冷却期

        Returns:
            tuple: (是否抑制, 抑制原因)
        """
        if cooldown is None:
            return False, None

        cooldown_state = self.cooldown_states.get(service_id)
        if cooldown_state is None:
            return False, None

        duration, max_alerts = self._parse_cooldown(cooldown)
        if duration is None:
            return False, None

        minutes_since_last = (now - cooldown_state.last_alert_sent).total_seconds() / 60
        if minutes_since_last >= duration:
            return False, None

        if max_alerts is not None:
            if cooldown_state.alerts_in_current_period >= max_alerts:
                return True, f'冷却期内已达到告警上限 ({max_alerts} 次 / {duration:g} 分钟)'
            return False, None

        remaining = duration - minutes_since_last
        return True, f'冷却期内 (剩余 {remaining:.1f} 分钟)'

    def _update_cooldown(self, service_id: str, cooldown: Optional[CooldownPolicy],
                         now: datetime) -> None:
        cooldown_state = self.cooldown_states.get(service_id)
        duration = self._parse_cooldown(cooldown)[0] if cooldown else None

        if cooldown_state is None:
            self.cooldown_states[service_id] = CooldownState(
                last_alert_sent=now, period_started=now, alerts_in_current_period=1
            )
            return

        period_minutes = (now - cooldown_state.period_started).total_seconds() / 60
        if duration is None or period_minutes >= duration:
            cooldown_state.period_started = now
            cooldown_state.alerts_in_current_period = 1
        else:
            cooldown_state.alerts_in_current_period += 1
        cooldown_state.last_alert_sent = now

    def _parse_cooldown(self, cooldown: CooldownPolicy) -> Tuple[Optional[float], Optional[int]]:
        """解析冷却配置，非法值按不抑制处理"""
        try:
            duration = float(cooldown.duration_minutes)
            max_alerts = (
                int(cooldown.max_alerts_in_period)
                if cooldown.max_alerts_in_period is not None else None
            )
        except (TypeError, ValueError):
            self.logger.warning(f"冷却策略配置无效，按不抑制处理: {cooldown}")
            return None, None
        if duration <= 0:
            return None, None
        return duration, max_alerts

    def _safe_int(self, value, name: str) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            self.logger.warning(f"告警策略 {name} 配置无效: {value!r}，按 0 处理")
            return 0

    @staticmethod
    def _determine_type(result: CheckResult) -> AlertType:
        if result.status == ServiceStatus.DEGRADED:
            return AlertType.DEGRADED
        if result.is_timeout:
            return AlertType.TIMEOUT
        return AlertType.DOWN

    @staticmethod
    def determine_priority(result: CheckResult) -> AlertPriority:
        """
        根据检查结果确定优先级

        关键服务一律为 critical；否则 down 为 high，degraded 为 medium，其他为 low。
        """
        if result.critical:
            return AlertPriority.CRITICAL
        if result.status == ServiceStatus.DOWN:
            return AlertPriority.HIGH
        if result.status == ServiceStatus.DEGRADED:
            return AlertPriority.MEDIUM
        return AlertPriority.LOW

    def _create_record(self, result: CheckResult, alert_type: AlertType,
                       status: AlertStatus) -> AlertRecord:
        return AlertRecord(
            service_id=result.service_id,
            service_name=result.service_name,
            type=alert_type,
            priority=self.determine_priority(result),
            status=status,
            check_result=result,
            created_at=result.timestamp
        )

    def _save_record(self, record: AlertRecord) -> None:
        history = self.alert_history.get(record.service_id)
        if history is None:
            history = deque(maxlen=self.history_size)
            self.alert_history[record.service_id] = history
        history.append(record)

    def check_escalation(self, service_id: str, policy: Optional[EscalationPolicy],
                         now: Optional[datetime] = None) -> EscalationDecision:
        """
        判断服务是否需要升级

        服务持续 down 达到 after_minutes 且尚未升级时返回需要升级，
        并标记 has_active_escalation，同一次故障只升级一次。

        Args:
            service_id: 服务ID
            policy: 升级策略
            now: 当前时间

        Returns:
            EscalationDecision: 升级判定
        """
        try:
            if policy is None or not policy.enabled:
                return EscalationDecision(needs_escalation=False)

            state = self.health_states.get(service_id)
            if state is None or state.downtime_started is None:
                return EscalationDecision(needs_escalation=False)
            if state.current_status != ServiceStatus.DOWN or state.has_active_escalation:
                return EscalationDecision(needs_escalation=False)

            now = now or datetime.now()
            downtime_minutes = (now - state.downtime_started).total_seconds() / 60
            if downtime_minutes < float(policy.after_minutes):
                return EscalationDecision(needs_escalation=False, downtime_minutes=downtime_minutes)

            state.has_active_escalation = True
            self.logger.warning(
                f"服务 {service_id} 已持续故障 {downtime_minutes:.1f} 分钟，触发升级"
            )
            return EscalationDecision(needs_escalation=True, downtime_minutes=downtime_minutes)

        except Exception as e:
            self.logger.error(f"升级判定失败 (服务: {service_id}): {e}")
            return EscalationDecision(needs_escalation=False)

    def mark_alert_sent(self, alert_id: str, service_id: Optional[str] = None,
                        sent_at: Optional[datetime] = None) -> bool:
        """将告警记录标记为已发送"""
        record = self._find_record(alert_id, service_id)
        if record is None:
            return False
        record.status = AlertStatus.SENT
        record.sent_at = sent_at or datetime.now()
        return True

    def mark_alert_escalated(self, service_id: str, notify_to: Optional[List[str]] = None,
                             downtime_minutes: Optional[float] = None) -> Optional[AlertRecord]:
        """将服务最近一条已发出的告警标记为已升级"""
        for record in reversed(self.alert_history.get(service_id, ())):
            if record.status in (AlertStatus.SENT, AlertStatus.PENDING) and \
                    record.type != AlertType.RECOVERED:
                record.status = AlertStatus.ESCALATED
                record.metadata['escalated_at'] = datetime.now().isoformat()
                record.metadata['escalated_to'] = list(notify_to or [])
                record.metadata['downtime_minutes'] = downtime_minutes
                return record
        return None

    def _find_record(self, alert_id: str, service_id: Optional[str]) -> Optional[AlertRecord]:
        histories = (
            [self.alert_history.get(service_id, ())] if service_id
            else list(self.alert_history.values())
        )
        for history in histories:
            for record in history:
                if record.id == alert_id:
                    return record
        return None

    def get_health_state(self, service_id: str) -> Optional[ServiceHealthState]:
        state = self.health_states.get(service_id)
        return replace(state) if state else None

    def get_all_health_states(self) -> Dict[str, ServiceHealthState]:
        return {service_id: replace(state) for service_id, state in self.health_states.items()}

    def get_alert_history(self, service_id: str, limit: Optional[int] = None) -> List[AlertRecord]:
        """获取服务告警记录，按时间倒序"""
        records = list(reversed(self.alert_history.get(service_id, ())))
        return records[:limit] if limit else records

    def get_active_alerts(self) -> List[AlertRecord]:
        """当前仍处于故障中的服务最近一条已发出告警"""
        active = []
        for service_id, history in self.alert_history.items():
            state = self.health_states.get(service_id)
            if state is None or state.downtime_started is None:
                continue
            for record in reversed(history):
                if record.type != AlertType.RECOVERED and record.status in (
                        AlertStatus.PENDING, AlertStatus.SENT, AlertStatus.ESCALATED):
                    active.append(record)
                    break
        return active

    def cleanup(self, older_than_hours: float = 24, now: Optional[datetime] = None) -> int:
        """
        清理过期的告警记录

        Returns:
            int: 清理的记录数
        """
        cutoff = (now or datetime.now()) - timedelta(hours=older_than_hours)
        removed = 0
        for service_id, history in self.alert_history.items():
            kept = [record for record in history if record.created_at >= cutoff]
            removed += len(history) - len(kept)
            self.alert_history[service_id] = deque(kept, maxlen=self.history_size)
        if removed:
            self.logger.info(f"清理了 {removed} 条过期告警记录")
        return removed

    def reset_service(self, service_id: str) -> None:
        """清除服务的全部告警状态"""
        self.health_states.pop(service_id, None)
        self.cooldown_states.pop(service_id, None)
        self.alert_history.pop(service_id, None)

    def get_stats(self) -> Dict[str, int]:
        records = [record for history in self.alert_history.values() for record in history]
        return {
            'tracked_services': len(self.health_states),
            'total_alerts': len(records),
            'sent': sum(1 for r in records if r.status == AlertStatus.SENT),
            'suppressed': sum(1 for r in records if r.status == AlertStatus.SUPPRESSED),
            'escalated': sum(1 for r in records if r.status == AlertStatus.ESCALATED),
            'services_in_cooldown': len(self.cooldown_states)
        }
