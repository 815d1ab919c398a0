"""配置验证工具"""

from typing import Any, Dict, List, Optional

from .exceptions import ConfigError, ErrorCode
from .schedule import parse_schedule

VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
VALID_METHODS = ['GET', 'POST', 'HEAD', 'PUT', 'PATCH', 'DELETE']
VALID_WINDOWS = ['1h', '24h', '7d', '30d', '90d']
VALID_INDICATORS = ['availability', 'latency', 'errorRate']
VALID_NOTIFIER_TYPES = ['http', 'log']
VALID_PATTERNS = [
    'progressive_degradation', 'intermittent_failures', 'recurring_downtime',
    'cascade_failure', 'performance_spike', 'recovery_pattern'
]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require_positive(value: Any, name: str, allow_zero: bool = False) -> None:
    if value is None:
        return
    if not _is_number(value) or value < 0 or (value == 0 and not allow_zero):
        qualifier = '非负数' if allow_zero else '正数'
        raise ConfigError(f"{name} 必须是{qualifier}: {value!r}")


class ConfigValidator:
    """配置验证器"""

    @staticmethod
    def validate_global_config(global_config: Dict[str, Any]) -> None:
        """
        验证全局配置

        Args:
            global_config: 全局配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(global_config, dict):
            raise ConfigError("全局配置必须是字典类型")

        log_level = global_config.get('log_level')
        if log_level is not None and str(log_level).upper() not in VALID_LOG_LEVELS:
            raise ConfigError(f"log_level 必须是以下值之一: {VALID_LOG_LEVELS}")

        for key in ('default_timeout_ms', 'history_size', 'slo_evaluation_interval',
                    'burn_rate_ceiling', 'slow_response_threshold_ms', 'statistics_save_interval',
                    'evidence_retention_days', 'max_log_size', 'log_backup_count'):
            _require_positive(global_config.get(key), key)

        history_size = global_config.get('history_size')
        if history_size is not None and not isinstance(history_size, int):
            raise ConfigError("history_size 必须是正整数")

        pattern_config = global_config.get('pattern_detection')
        if pattern_config is not None:
            ConfigValidator.validate_pattern_config(pattern_config)

    @staticmethod
    def validate_pattern_config(config: Dict[str, Any]) -> None:
        if not isinstance(config, dict):
            raise ConfigError("pattern_detection 配置必须是字典类型")
        _require_positive(config.get('time_window_minutes'), 'pattern_detection.time_window_minutes')
        _require_positive(config.get('analysis_interval'), 'pattern_detection.analysis_interval')
        patterns = config.get('enabled_patterns')
        if patterns is not None:
            if not isinstance(patterns, list):
                raise ConfigError("pattern_detection.enabled_patterns 必须是列表")
            unknown = [p for p in patterns if p not in VALID_PATTERNS]
            if unknown:
                raise ConfigError(f"不支持的模式类型: {unknown}，支持的类型: {VALID_PATTERNS}")

    @staticmethod
    def validate_service_config(config: Dict[str, Any], index: int = 0) -> None:
        """
        验证单个服务配置

        Args:
            config: 服务配置
            index: 服务在列表中的位置，用于错误信息

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(config, dict):
            raise ConfigError(f"第 {index + 1} 个服务的配置必须是字典类型")

        service_id = config.get('id')
        label = f"服务 '{service_id}'" if service_id else f"第 {index + 1} 个服务"

        for field_name in ('id', 'name', 'url'):
            if not config.get(field_name) or not isinstance(config.get(field_name), str):
                raise ConfigError(f"{label} 缺少必需的配置项: {field_name}")

        url = config['url']
        if not url.startswith(('http://', 'https://')):
            raise ConfigError(f"{label} 的 url 必须以 http:// 或 https:// 开头: {url}")

        ConfigValidator._validate_schedule(config.get('interval', 60), label)

        health_check = config.get('health_check')
        if health_check is not None:
            ConfigValidator._validate_health_check(health_check, label)

        alerts = config.get('alerts')
        if alerts is not None:
            ConfigValidator._validate_alert_policy(alerts, label)

    @staticmethod
    def _validate_schedule(expression: Any, label: str) -> None:
        try:
            parse_schedule(expression)
        except ConfigError as e:
            raise ConfigError(f"{label} 的 interval 无效: {e.message}",
                              ErrorCode.INVALID_SCHEDULE, cause=e)

    @staticmethod
    def _validate_health_check(config: Dict[str, Any], label: str) -> None:
        if not isinstance(config, dict):
            raise ConfigError(f"{label} 的 health_check 必须是字典类型")

        method = str(config.get('method', 'GET')).upper()
        if method not in VALID_METHODS:
            raise ConfigError(f"{label} 的请求方法 {method} 不受支持，支持的方法: {VALID_METHODS}")

        headers = config.get('headers')
        if headers is not None and not isinstance(headers, dict):
            raise ConfigError(f"{label} 的 headers 必须是字典类型")

        _require_positive(config.get('timeout_ms'), f"{label} 的 timeout_ms")

        expected = config.get('expected_response')
        if expected is None:
            return
        if not isinstance(expected, dict):
            raise ConfigError(f"{label} 的 expected_response 必须是字典类型")

        status_code = expected.get('status_code')
        if status_code is not None and (not isinstance(status_code, int) or not 100 <= status_code <= 599):
            raise ConfigError(f"{label} 的 status_code 无效: {status_code!r}")

        accepted = expected.get('accepted_status_codes')
        if accepted is not None:
            if not isinstance(accepted, list) or not all(isinstance(c, int) for c in accepted):
                raise ConfigError(f"{label} 的 accepted_status_codes 必须是整数列表")

        required_headers = expected.get('required_headers')
        if required_headers is not None and not isinstance(required_headers, list):
            raise ConfigError(f"{label} 的 required_headers 必须是列表")

        _require_positive(expected.get('max_response_time_ms'), f"{label} 的 max_response_time_ms")

    @staticmethod
    def _validate_alert_policy(config: Dict[str, Any], label: str) -> None:
        if not isinstance(config, dict):
            raise ConfigError(f"{label} 的 alerts 必须是字典类型")

        recipients = config.get('recipients')
        if recipients is not None and not isinstance(recipients, list):
            raise ConfigError(f"{label} 的 recipients 必须是列表")

        cooldown = config.get('cooldown')
        if cooldown is not None:
            if not isinstance(cooldown, dict):
                raise ConfigError(f"{label} 的 cooldown 必须是字典类型")
            _require_positive(cooldown.get('duration_minutes'), f"{label} 的 cooldown.duration_minutes",
                              allow_zero=True)
            _require_positive(cooldown.get('max_alerts_in_period'),
                              f"{label} 的 cooldown.max_alerts_in_period")

        retry = config.get('retry')
        if retry is not None:
            if not isinstance(retry, dict):
                raise ConfigError(f"{label} 的 retry 必须是字典类型")
            _require_positive(retry.get('attempts'), f"{label} 的 retry.attempts", allow_zero=True)
            _require_positive(retry.get('delay_ms'), f"{label} 的 retry.delay_ms", allow_zero=True)

        escalation = config.get('escalation')
        if escalation is not None:
            if not isinstance(escalation, dict):
                raise ConfigError(f"{label} 的 escalation 必须是字典类型")
            if escalation.get('enabled') and escalation.get('after_minutes') is None:
                raise ConfigError(f"{label} 启用了升级但缺少 after_minutes")
            _require_positive(escalation.get('after_minutes'), f"{label} 的 escalation.after_minutes",
                              allow_zero=True)

    @staticmethod
    def validate_services(services: List[Dict[str, Any]]) -> None:
        """验证服务列表，服务ID不能重复"""
        if not isinstance(services, list):
            raise ConfigError("services 配置必须是列表类型")

        seen = set()
        for index, service in enumerate(services):
            ConfigValidator.validate_service_config(service, index)
            if service['id'] in seen:
                raise ConfigError(f"服务ID重复: {service['id']}", ErrorCode.DUPLICATE_SERVICE_ID)
            seen.add(service['id'])

    @staticmethod
    def validate_slo_config(config: Dict[str, Any], service_ids: Optional[set] = None,
                            index: int = 0) -> None:
        """
        验证单个 SLO 配置

        Args:
            config: SLO 配置
            service_ids: 已配置的服务ID集合，为None时不检查引用
            index: SLO 在列表中的位置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(config, dict):
            raise ConfigError(f"第 {index + 1} 个 SLO 的配置必须是字典类型")

        slo_id = config.get('id')
        label = f"SLO '{slo_id}'" if slo_id else f"第 {index + 1} 个 SLO"

        for field_name in ('id', 'service_id', 'name'):
            if not config.get(field_name):
                raise ConfigError(f"{label} 缺少必需的配置项: {field_name}")

        if service_ids is not None and config['service_id'] not in service_ids:
            raise ConfigError(f"{label} 引用了不存在的服务: {config['service_id']}")

        target = config.get('target')
        if not _is_number(target) or not 0 <= target <= 100:
            raise ConfigError(f"{label} 的 target 必须在 [0, 100] 范围内: {target!r}")

        window = str(config.get('window', '30d'))
        if window not in VALID_WINDOWS:
            raise ConfigError(f"{label} 的 window 无效: {window}，支持的窗口: {VALID_WINDOWS}")

        indicator = config.get('indicator', 'availability')
        if indicator not in VALID_INDICATORS:
            raise ConfigError(f"{label} 的 indicator 无效: {indicator}，支持的指标: {VALID_INDICATORS}")

        threshold = config.get('threshold')
        if indicator == 'latency' and threshold is None:
            raise ConfigError(f"{label} 是延迟类 SLO，必须配置 threshold")
        _require_positive(threshold, f"{label} 的 threshold")

    @staticmethod
    def validate_slos(slos: List[Dict[str, Any]], service_ids: Optional[set] = None) -> None:
        if not isinstance(slos, list):
            raise ConfigError("slos 配置必须是列表类型")

        seen = set()
        for index, slo in enumerate(slos):
            ConfigValidator.validate_slo_config(slo, service_ids, index)
            if slo['id'] in seen:
                raise ConfigError(f"SLO ID重复: {slo['id']}")
            seen.add(slo['id'])

    @staticmethod
    def validate_notifier_config(notifier_config: Dict[str, Any]) -> None:
        """
        验证通知器配置

        Args:
            notifier_config: 通知器配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(notifier_config, dict):
            raise ConfigError("通知器配置必须是字典类型")

        for field_name in ('name', 'type'):
            if field_name not in notifier_config:
                raise ConfigError(f"通知器配置缺少必需的配置项: {field_name}")

        notifier_type = str(notifier_config['type']).lower()
        if notifier_type not in VALID_NOTIFIER_TYPES:
            raise ConfigError(
                f"通知器 '{notifier_config['name']}' 的类型 '{notifier_type}' 不受支持。"
                f"支持的类型: {VALID_NOTIFIER_TYPES}"
            )
        if notifier_type == 'http' and not notifier_config.get('url'):
            raise ConfigError(f"通知器 '{notifier_config['name']}' 缺少必需的配置项: url")
