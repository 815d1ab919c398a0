"""配置管理器测试"""

import os
import tempfile

import pytest

from conftest import VALID_CONFIG
from noc_monitor.models.slo import IndicatorType, SLOWindow
from noc_monitor.services.config_manager import ConfigManager
from noc_monitor.utils.exceptions import ConfigError, ErrorCode


class TestConfigManager:
    """配置管理器测试类"""

    def setup_method(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.config_path = os.path.join(self.temp_dir.name, 'config.yaml')

    def teardown_method(self):
        self.temp_dir.cleanup()

    def write_config(self, content: str) -> ConfigManager:
        with open(self.config_path, 'w', encoding='utf-8') as f:
            f.write(content)
        return ConfigManager(self.config_path)

    def test_load_valid_config(self):
        """测试加载有效配置"""
        manager = self.write_config(VALID_CONFIG)

        config = manager.load_config()

        assert len(config['services']) == 2
        assert manager.last_modified is not None
        assert not manager.is_config_changed()

    def test_file_not_found(self):
        manager = ConfigManager(os.path.join(self.temp_dir.name, 'missing.yaml'))

        with pytest.raises(ConfigError) as exc_info:
            manager.load_config()

        assert exc_info.value.error_code == ErrorCode.CONFIG_FILE_NOT_FOUND
        assert "配置文件不存在" in exc_info.value.message

    def test_invalid_yaml(self):
        manager = self.write_config("services: [unclosed")

        with pytest.raises(ConfigError) as exc_info:
            manager.load_config()

        assert exc_info.value.error_code == ErrorCode.CONFIG_PARSE_ERROR
        assert "YAML格式错误" in exc_info.value.message

    def test_empty_file(self):
        manager = self.write_config("")

        with pytest.raises(ConfigError, match="配置文件为空"):
            manager.load_config()

    def test_root_must_be_mapping(self):
        manager = self.write_config("- a\n- b\n")

        with pytest.raises(ConfigError, match="根节点"):
            manager.load_config()

    def test_global_defaults_merged(self):
        manager = self.write_config(VALID_CONFIG)
        manager.load_config()

        global_config = manager.get_global_config()

        assert global_config['default_timeout_ms'] == 3000
        assert global_config['history_size'] == 100
        assert global_config['burn_rate_ceiling'] == 999.0

    def test_pattern_detection_config(self):
        manager = self.write_config(VALID_CONFIG)
        manager.load_config()

        config = manager.get_pattern_detection_config()

        assert config.enabled
        assert config.time_window_minutes == 30
        assert config.enabled_patterns == ['intermittent_failures']
        assert config.analysis_interval == 300

    def test_service_definitions(self):
        """测试服务定义的构建"""
        manager = self.write_config(VALID_CONFIG)
        manager.load_config()

        api, web = manager.get_service_definitions()

        assert api.id == 'api'
        assert api.critical
        assert api.health_check.method == 'POST'
        assert api.health_check.body == {'ping': True}
        assert api.health_check.expected_response.accepted_status_codes == [200, 204]
        assert api.alerts.cooldown.max_alerts_in_period == 2
        assert api.alerts.retry.attempts == 1
        assert api.alerts.escalation.notify_to == ['lead@example.com']
        assert web.interval == '0 */5 * * * *'
        assert web.health_check is None
        assert web.alerts is None

    def test_slo_definitions(self):
        manager = self.write_config(VALID_CONFIG)
        manager.load_config()

        slo, = manager.get_slo_definitions()

        assert slo.target == 99.5
        assert slo.window == SLOWindow.SEVEN_DAYS
        assert slo.indicator == IndicatorType.AVAILABILITY

    def test_notifiers_config(self):
        manager = self.write_config(VALID_CONFIG)
        manager.load_config()

        assert manager.get_notifiers_config() == [{'name': 'console', 'type': 'log'}]

    def test_reload_detects_change(self):
        """测试修改后重新加载"""
        manager = self.write_config(VALID_CONFIG)
        manager.load_config()

        with open(self.config_path, 'w', encoding='utf-8') as f:
            f.write(VALID_CONFIG.replace('interval: 30s', 'interval: 45s'))
        os.utime(self.config_path, (manager.last_modified + 5, manager.last_modified + 5))

        assert manager.is_config_changed()
        config = manager.reload_config()
        assert config['services'][0]['interval'] == '45s'
        assert not manager.is_config_changed()

    def test_failed_reload_keeps_previous(self):
        manager = self.write_config(VALID_CONFIG)
        manager.load_config()

        with open(self.config_path, 'w', encoding='utf-8') as f:
            f.write("services: {broken")

        with pytest.raises(ConfigError):
            manager.reload_config()
        assert len(manager.config['services']) == 2

    def test_example_config_is_valid(self):
        """测试仓库自带的示例配置可以通过验证"""
        example = os.path.join(os.path.dirname(__file__), '..', 'config', 'example.yaml')
        manager = ConfigManager(example)

        config = manager.load_config()

        assert len(manager.get_service_definitions()) == len(config['services'])
        assert len(manager.get_slo_definitions()) == 2
