"""调度表达式

支持三种写法：
- 整数秒，例如 30
- 时长字符串，例如 "30s"、"5m"、"1h"
- cron 表达式，5 段（分 时 日 月 周）或 6 段（秒 分 时 日 月 周）

cron 的触发时间计算使用 APScheduler 的 CronTrigger。星期字段按 crontab 习惯，
0 和 7 表示周日，1 表示周一，解析时转换为 CronTrigger 的编号（0 为周一）。
"""

import re
from datetime import datetime, timedelta
from typing import Optional, Union

from apscheduler.triggers.cron import CronTrigger

from .exceptions import ConfigError, ErrorCode

_DURATION_PATTERN = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$', re.IGNORECASE)
_UNIT_SECONDS = {'ms': 0.001, 's': 1, 'm': 60, 'h': 3600, None: 1}


def _convert_day_of_week(field: str) -> str:
    """把 crontab 星期字段转换为 CronTrigger 的写法，星期名称原样保留"""
    if field == '*':
        return field

    days = set()
    names = []
    for part in field.split(','):
        base, _, step_text = part.partition('/')
        if base != '*' and not base.replace('-', '').isdigit():
            names.append(part.lower())
            continue

        step = int(step_text) if step_text else 1
        if base == '*':
            first, last = 0, 6
        elif '-' in base:
            first, last = (int(value) for value in base.split('-', 1))
        else:
            first = int(base)
            last = 6 if step_text else first
        if step <= 0 or not 0 <= first <= last <= 7:
            raise ValueError(f"无效的星期字段: {field}")
        # crontab 中 0 和 7 都是周日，CronTrigger 中周日是 6
        days.update((day + 6) % 7 for day in range(first, last + 1, step))

    return ','.join([str(day) for day in sorted(days)] + names)


class Schedule:
    """调度计划，给出距离下一次触发的等待秒数"""

    def __init__(self, expression: Union[int, float, str],
                 interval_seconds: Optional[float] = None,
                 trigger: Optional[CronTrigger] = None):
        self.expression = expression
        self.interval_seconds = interval_seconds
        self.trigger = trigger

    @property
    def is_cron(self) -> bool:
        return self.trigger is not None

    def current_time(self) -> datetime:
        """cron 计划按触发器时区取当前时间"""
        if self.trigger is None:
            return datetime.now()
        return datetime.now(self.trigger.timezone)

    def first_delay(self, now: Optional[datetime] = None) -> float:
        """首次触发前的等待秒数，固定间隔的服务启动后立即检查一次"""
        if self.trigger is None:
            return 0.0
        return self.next_delay(now)

    def next_delay(self, now: Optional[datetime] = None,
                   last_fire: Optional[datetime] = None) -> float:
        """
        计算距离下一次触发的等待秒数

        Args:
            now: 当前时间，cron 计划需要带时区；为 None 时取当前时间
            last_fire: 上一次触发时间，下一次触发至少在其 1 秒之后

        Returns:
            float: 等待秒数，不小于 0
        """
        if self.trigger is None:
            return float(self.interval_seconds)

        if now is None:
            now = datetime.now(self.trigger.timezone)
        base = now
        if last_fire is not None and last_fire + timedelta(seconds=1) > now:
            base = last_fire + timedelta(seconds=1)
        next_fire = self.trigger.get_next_fire_time(None, base)
        if next_fire is None:
            raise ConfigError(
                f"cron 表达式没有后续触发时间: {self.expression}",
                ErrorCode.INVALID_SCHEDULE
            )
        return max(0.0, (next_fire - now).total_seconds())

    def describe(self) -> str:
        if self.trigger is not None:
            return f"cron({self.expression})"
        return f"每 {self.interval_seconds:g} 秒"

    def __repr__(self):
        return f"Schedule({self.describe()})"


def parse_schedule(expression: Union[int, float, str]) -> Schedule:
    """
    解析调度表达式

    Args:
        expression: 调度表达式

    Returns:
        Schedule: 调度计划

    Raises:
        ConfigError: 表达式格式错误或间隔不为正
    """
    if isinstance(expression, bool):
        raise ConfigError(f"无效的调度表达式: {expression}", ErrorCode.INVALID_SCHEDULE)

    if isinstance(expression, (int, float)):
        if expression <= 0:
            raise ConfigError(f"检查间隔必须为正数: {expression}", ErrorCode.INVALID_SCHEDULE)
        return Schedule(expression, interval_seconds=float(expression))

    if not isinstance(expression, str) or not expression.strip():
        raise ConfigError(f"无效的调度表达式: {expression!r}", ErrorCode.INVALID_SCHEDULE)

    match = _DURATION_PATTERN.match(expression)
    if match:
        value = float(match.group(1))
        unit = match.group(2).lower() if match.group(2) else None
        seconds = value * _UNIT_SECONDS[unit]
        if seconds <= 0:
            raise ConfigError(f"检查间隔必须为正数: {expression}", ErrorCode.INVALID_SCHEDULE)
        return Schedule(expression, interval_seconds=seconds)

    fields = expression.split()
    try:
        if len(fields) == 5:
            fields.insert(0, '0')
        elif len(fields) != 6:
            raise ValueError(f"cron 表达式需要 5 或 6 段，实际 {len(fields)} 段")
        second, minute, hour, day, month, day_of_week = fields
        trigger = CronTrigger(second=second, minute=minute, hour=hour, day=day, month=month,
                              day_of_week=_convert_day_of_week(day_of_week))
    except ValueError as e:
        raise ConfigError(
            f"无效的调度表达式 '{expression}': {e}",
            ErrorCode.INVALID_SCHEDULE,
            cause=e
        )

    return Schedule(expression, trigger=trigger)
