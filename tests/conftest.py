"""测试共用的配置样例"""

VALID_CONFIG = """
global:
  log_level: INFO
  default_timeout_ms: 3000
  slo_evaluation_interval: 60
  pattern_detection:
    time_window_minutes: 30
    enabled_patterns: [intermittent_failures]

services:
  - id: api
    name: API 服务
    url: https://api.example.com/health
    interval: 30s
    critical: true
    health_check:
      method: post
      body:
        ping: true
      expected_response:
        accepted_status_codes: [200, 204]
        max_response_time_ms: 800
    alerts:
      notify_on_recovery: true
      recipients: [oncall@example.com]
      cooldown:
        duration_minutes: 10
        max_alerts_in_period: 2
      retry:
        attempts: 1
      escalation:
        enabled: true
        after_minutes: 15
        notify_to: [lead@example.com]

  - id: web
    name: 官网
    url: http://www.example.com/
    interval: "0 */5 * * * *"

slos:
  - id: api-availability
    service_id: api
    name: API 可用性
    target: 99.5
    window: 7d

notifiers:
  - name: console
    type: log
"""
