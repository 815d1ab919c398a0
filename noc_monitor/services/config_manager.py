"""配置管理器"""

import os
from typing import Any, Dict, List, Optional

import yaml

from ..models.pattern import DEFAULT_ENABLED_PATTERNS, PatternDetectionConfig
from ..models.service import (
    AlertPolicy, CooldownPolicy, EscalationPolicy, ExpectedResponse, HealthCheckConfig,
    RetryPolicy, ServiceDefinition
)
from ..models.slo import IndicatorType, SLODefinition, SLOWindow
from ..utils.config_validator import ConfigValidator
from ..utils.exceptions import ConfigError, ErrorCode
from ..utils.log_manager import get_logger

DEFAULT_GLOBAL_CONFIG: Dict[str, Any] = {
    'log_level': 'INFO',
    'log_file': None,
    'default_timeout_ms': 5000,
    'history_size': 100,
    'evidence_file': None,
    'incidents_file': None,
    'slo_status_file': None,
    'statistics_file': None,
    'statistics_save_interval': 30,
    'evidence_retention_days': 90,
    'slo_evaluation_interval': 300,
    'burn_rate_ceiling': 999.0,
    'slow_response_threshold_ms': 3000,
}


class ConfigManager:
    """配置管理器，负责YAML配置文件的加载、解析和验证"""

    def __init__(self, config_path: str):
        """
        初始化配置管理器

        Args:
            config_path: 配置文件路径
        """
        self.config_path = config_path
        self.config: Dict[str, Any] = {}
        self.last_modified: Optional[float] = None
        self.logger = get_logger('config_manager')

    def load_config(self) -> Dict[str, Any]:
        """
        加载并验证YAML配置文件

        Returns:
            Dict[str, Any]: 配置字典

        Raises:
            ConfigError: 配置加载或验证失败
        """
        self.logger.info(f"开始加载配置文件: {self.config_path}")

        if not os.path.exists(self.config_path):
            self.logger.error(f"配置文件不存在: {self.config_path}")
            raise ConfigError(f"配置文件不存在: {self.config_path}",
                              ErrorCode.CONFIG_FILE_NOT_FOUND, config_path=self.config_path)

        try:
            with open(self.config_path, 'r', encoding='utf-8') as file:
                config = yaml.safe_load(file)
        except yaml.YAMLError as e:
            self.logger.error(f"YAML格式错误: {e}")
            raise ConfigError(f"YAML格式错误: {e}", ErrorCode.CONFIG_PARSE_ERROR,
                              config_path=self.config_path, cause=e)
        except OSError as e:
            self.logger.error(f"读取配置文件失败: {e}")
            raise ConfigError(f"读取配置文件失败: {e}", ErrorCode.CONFIG_PARSE_ERROR,
                              config_path=self.config_path, cause=e)

        if config is None:
            self.logger.error("配置文件为空")
            raise ConfigError("配置文件为空", config_path=self.config_path)

        self.validate_config(config)

        self.logger.info(
            f"配置验证成功，包含 {len(config.get('services', []))} 个服务、"
            f"{len(config.get('slos', []))} 个 SLO 和 {len(config.get('notifiers', []))} 个通知器"
        )

        old_config = self.config
        self.config = config
        self.last_modified = os.path.getmtime(self.config_path)

        if old_config:
            self._log_config_changes(old_config, config)
        else:
            self.logger.info("首次加载配置文件")

        return self.config

    @staticmethod
    def validate_config(config: Dict[str, Any]) -> None:
        """
        验证配置文件内容

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(config, dict):
            raise ConfigError("配置文件根节点必须是字典类型")

        if 'global' in config:
            ConfigValidator.validate_global_config(config['global'])

        services = config.get('services') or []
        ConfigValidator.validate_services(services)

        slos = config.get('slos') or []
        ConfigValidator.validate_slos(slos, {service['id'] for service in services})

        notifiers = config.get('notifiers') or []
        if not isinstance(notifiers, list):
            raise ConfigError("notifiers 配置必须是列表类型")
        for notifier_config in notifiers:
            ConfigValidator.validate_notifier_config(notifier_config)

    def get_global_config(self) -> Dict[str, Any]:
        """获取全局配置，未配置的项使用默认值"""
        merged = dict(DEFAULT_GLOBAL_CONFIG)
        merged.update(self.config.get('global') or {})
        return merged

    def get_pattern_detection_config(self) -> PatternDetectionConfig:
        raw = self.get_global_config().get('pattern_detection') or {}
        return PatternDetectionConfig(
            enabled=raw.get('enabled', True),
            time_window_minutes=raw.get('time_window_minutes', 60),
            enabled_patterns=list(raw.get('enabled_patterns', DEFAULT_ENABLED_PATTERNS)),
            analysis_interval=raw.get('analysis_interval', 300),
            notify_on_detection=raw.get('notify_on_detection', True)
        )

    def get_service_definitions(self) -> List[ServiceDefinition]:
        """
        获取服务定义

        Returns:
            List[ServiceDefinition]: 按配置顺序排列的服务定义
        """
        return [build_service_definition(item) for item in self.config.get('services') or []]

    def get_slo_definitions(self) -> List[SLODefinition]:
        return [build_slo_definition(item) for item in self.config.get('slos') or []]

    def get_notifiers_config(self) -> List[Dict[str, Any]]:
        return list(self.config.get('notifiers') or [])

    def is_config_changed(self) -> bool:
        """
        检查配置文件是否已修改

        Returns:
            bool: 配置文件是否已修改
        """
        try:
            if not os.path.exists(self.config_path):
                return False

            current_modified = os.path.getmtime(self.config_path)
            return self.last_modified is None or current_modified > self.last_modified

        except OSError:
            return False

    def reload_config(self) -> Dict[str, Any]:
        """
        重新加载配置文件，失败时保留原配置

        Raises:
            ConfigError: 配置重新加载失败
        """
        self.logger.info("重新加载配置文件")
        return self.load_config()

    def _log_config_changes(self, old_config: Dict[str, Any], new_config: Dict[str, Any]) -> None:
        """记录配置变更"""
        old_services = {s['id']: s for s in old_config.get('services') or []}
        new_services = {s['id']: s for s in new_config.get('services') or []}

        added = sorted(set(new_services) - set(old_services))
        if added:
            self.logger.info(f"新增服务: {', '.join(added)}")

        removed = sorted(set(old_services) - set(new_services))
        if removed:
            self.logger.info(f"删除服务: {', '.join(removed)}")

        for service_id in sorted(set(old_services) & set(new_services)):
            if old_services[service_id] != new_services[service_id]:
                self.logger.info(f"服务配置已修改: {service_id}")
                self.logger.debug(f"服务 {service_id} 新配置: {new_services[service_id]}")

        if old_config.get('slos') != new_config.get('slos'):
            self.logger.info("SLO 配置已修改")
        if old_config.get('notifiers') != new_config.get('notifiers'):
            self.logger.info("通知器配置已修改")
        if old_config.get('global') != new_config.get('global'):
            self.logger.info("全局配置已修改")


def build_service_definition(data: Dict[str, Any]) -> ServiceDefinition:
    """把已验证的服务配置转换为 ServiceDefinition"""
    health_check = None
    raw_check = data.get('health_check')
    if raw_check is not None:
        expected = None
        raw_expected = raw_check.get('expected_response')
        if raw_expected is not None:
            expected = ExpectedResponse(
                status_code=raw_expected.get('status_code'),
                accepted_status_codes=list(raw_expected.get('accepted_status_codes') or []),
                body_contains=raw_expected.get('body_contains'),
                required_headers=list(raw_expected.get('required_headers') or []),
                max_response_time_ms=raw_expected.get('max_response_time_ms')
            )
        health_check = HealthCheckConfig(
            method=str(raw_check.get('method', 'GET')).upper(),
            headers=dict(raw_check.get('headers') or {}),
            body=raw_check.get('body'),
            timeout_ms=raw_check.get('timeout_ms'),
            follow_redirects=raw_check.get('follow_redirects', True),
            expected_response=expected
        )

    alerts = None
    raw_alerts = data.get('alerts')
    if raw_alerts is not None:
        cooldown = raw_alerts.get('cooldown')
        retry = raw_alerts.get('retry')
        escalation = raw_alerts.get('escalation')
        alerts = AlertPolicy(
            enabled=raw_alerts.get('enabled', True),
            notify_on_recovery=raw_alerts.get('notify_on_recovery', False),
            recipients=list(raw_alerts.get('recipients') or []),
            cooldown=CooldownPolicy(
                duration_minutes=cooldown.get('duration_minutes', 0),
                max_alerts_in_period=cooldown.get('max_alerts_in_period')
            ) if cooldown else None,
            retry=RetryPolicy(
                attempts=retry.get('attempts', 0),
                delay_ms=retry.get('delay_ms', 0)
            ) if retry else None,
            escalation=EscalationPolicy(
                enabled=escalation.get('enabled', False),
                after_minutes=escalation.get('after_minutes', 0),
                notify_to=list(escalation.get('notify_to') or [])
            ) if escalation else None
        )

    return ServiceDefinition(
        id=data['id'],
        name=data['name'],
        url=data['url'],
        interval=data.get('interval', 60),
        critical=data.get('critical', False),
        enabled=data.get('enabled', True),
        description=data.get('description', ''),
        tags=list(data.get('tags') or []),
        health_check=health_check,
        alerts=alerts
    )


def build_slo_definition(data: Dict[str, Any]) -> SLODefinition:
    """把已验证的 SLO 配置转换为 SLODefinition"""
    return SLODefinition(
        id=data['id'],
        service_id=data['service_id'],
        name=data['name'],
        target=float(data['target']),
        window=SLOWindow(str(data.get('window', '30d'))),
        indicator=IndicatorType(data.get('indicator', 'availability')),
        threshold=data.get('threshold'),
        description=data.get('description', ''),
        enabled=data.get('enabled', True)
    )
