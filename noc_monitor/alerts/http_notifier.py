"""HTTP Webhook 通知器"""

import asyncio
import json
from typing import Dict, Any
from urllib.parse import urlparse

import aiohttp

from .base import BaseNotifier
from ..models.alert import Notification
from ..utils.exceptions import NotificationConfigError, NotificationSendError
from ..utils.log_manager import get_logger

_JSON_ESCAPES = (
    ('\\', '\\\\'),
    ('"', '\\"'),
    ('\n', '\\n'),
    ('\r', '\\r'),
    ('\t', '\\t'),
)


class HTTPNotifier(BaseNotifier):
    """HTTP通知器，通过 Webhook 投递通知，失败时按指数退避重试"""

    def __init__(self, name: str, config: Dict[str, Any]):
        """
        初始化HTTP通知器

        Args:
            name: 通知器名称
            config: 通知器配置

        Raises:
            NotificationConfigError: 配置无效
        """
        super().__init__(name, config)
        self.logger = get_logger(f'notifier.http.{self.name}')

        self.max_retries = config.get('max_retries', 3)
        self.retry_delay = config.get('retry_delay', 1.0)  # 秒
        self.retry_backoff = config.get('retry_backoff', 2.0)

        self.url = config.get('url', '')
        self.method = config.get('method', 'POST').upper()
        self.headers = config.get('headers', {})
        self.template = config.get('template', '')
        self.ssl_verify = config.get('ssl_verify', True)

        if not self.validate_config():
            raise NotificationConfigError(f"HTTP通知器配置无效: {name}", notifier_name=name)

    def validate_config(self) -> bool:
        if not self.url:
            self.logger.error(f"HTTP通知器 {self.name} 缺少URL配置")
            return False

        parsed_url = urlparse(self.url)
        if parsed_url.scheme not in ('http', 'https') or not parsed_url.netloc:
            self.logger.error(f"HTTP通知器 {self.name} URL格式无效: {self.url}")
            return False

        valid_methods = ['GET', 'POST', 'PUT', 'PATCH']
        if self.method not in valid_methods:
            self.logger.error(
                f"HTTP通知器 {self.name} 不支持的HTTP方法: {self.method}, 支持的方法: {valid_methods}"
            )
            return False

        if self.max_retries < 0 or self.retry_delay < 0:
            self.logger.error(f"HTTP通知器 {self.name} 重试配置不能为负数")
            return False

        if self.template and not self.template.strip():
            self.logger.error(f"HTTP通知器 {self.name} 模板不能为空")
            return False

        return True

    async def send(self, notification: Notification) -> bool:
        """
        发送通知，所有重试失败后抛出 NotificationSendError

        Args:
            notification: 通知负载

        Returns:
            bool: 发送是否成功
        """
        self.logger.info(
            f"发送通知: 类别={notification.kind.value}, 服务={notification.service_id}, "
            f"标题={notification.title}"
        )

        last_error = None
        for attempt in range(self.max_retries + 1):
            try:
                if await self._send_request(notification):
                    if attempt > 0:
                        self.logger.info(f"HTTP通知器 {self.name} 重试第 {attempt} 次后发送成功")
                    return True
                last_error = '服务端返回失败响应'
            except NotificationSendError as e:
                last_error = e.message
                self.logger.warning(
                    f"HTTP通知器 {self.name} 发送失败 "
                    f"(尝试 {attempt + 1}/{self.max_retries + 1}): {e.message}"
                )

            if attempt < self.max_retries:
                delay = self.retry_delay * (self.retry_backoff ** attempt)
                self.logger.debug(f"等待 {delay:.2f} 秒后重试")
                await asyncio.sleep(delay)

        self.logger.error(f"HTTP通知器 {self.name} 所有重试均失败，放弃发送")
        raise NotificationSendError(
            f"HTTP通知发送失败: {last_error}", notifier_name=self.name
        )

    async def _send_request(self, notification: Notification) -> bool:
        request_data = self._prepare_request_data(notification)
        timeout = aiohttp.ClientTimeout(total=self.get_timeout())
        connector = aiohttp.TCPConnector(ssl=bool(self.ssl_verify))

        try:
            async with aiohttp.ClientSession(timeout=timeout, connector=connector) as session:
                async with session.request(
                        method=self.method,
                        url=self.url,
                        headers=self.headers,
                        **request_data
                ) as response:
                    response_text = await response.text()
                    if not 200 <= response.status < 300:
                        self.logger.warning(
                            f"HTTP通知器 {self.name} 收到错误响应 "
                            f"(状态码: {response.status}, 响应: {response_text[:200]})"
                        )
                        return False

                    # 部分机器人 Webhook 在 200 响应体中用 errcode 表示失败
                    try:
                        body = json.loads(response_text) if response_text else None
                    except json.JSONDecodeError:
                        body = None
                    if isinstance(body, dict) and body.get('errcode', 0) != 0:
                        self.logger.error(
                            f"HTTP通知器 {self.name} 返回错误: "
                            f"errcode={body.get('errcode')}, errmsg={body.get('errmsg')}"
                        )
                        return False
                    return True

        except asyncio.TimeoutError:
            raise NotificationSendError("HTTP请求超时", notifier_name=self.name)
        except aiohttp.ClientError as e:
            raise NotificationSendError(f"HTTP请求失败: {e}", notifier_name=self.name, cause=e)

    def _prepare_request_data(self, notification: Notification) -> Dict[str, Any]:
        if self.method == 'GET':
            return {'params': self._create_query_params(notification)}

        if not self.template:
            return {'json': notification.to_dict()}

        rendered = self.render_template(self.template, notification)
        try:
            return {'json': json.loads(rendered)}
        except json.JSONDecodeError:
            return {'data': rendered}

    def render_template(self, template_str: str, notification: Notification) -> str:
        """
        使用 {{变量}} 语法渲染模板，JSON 模板中的值会被转义

        Args:
            template_str: 模板字符串
            notification: 通知负载

        Returns:
            str: 渲染结果
        """
        template_vars = {
            'kind': notification.kind.value,
            'title': notification.title,
            'message': notification.message,
            'service_id': notification.service_id,
            'service_name': notification.service_name,
            'priority': notification.priority.value,
            'recipients': ','.join(notification.recipients),
            'timestamp': notification.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
        }
        for key, value in notification.data.items():
            template_vars[f'data_{key}'] = value

        stripped = template_str.strip()
        is_json_template = stripped.startswith('{') and stripped.endswith('}')

        rendered = template_str
        for key, value in template_vars.items():
            safe_value = '' if value is None else str(value)
            if is_json_template:
                for raw, escaped in _JSON_ESCAPES:
                    safe_value = safe_value.replace(raw, escaped)
            rendered = rendered.replace(f'{{{{{key}}}}}', safe_value)

        return rendered

    @staticmethod
    def _create_query_params(notification: Notification) -> Dict[str, str]:
        return {
            'kind': notification.kind.value,
            'title': notification.title,
            'message': notification.message,
            'service_id': notification.service_id,
            'priority': notification.priority.value,
            'timestamp': notification.timestamp.isoformat()
        }

    def get_config_summary(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'type': 'http',
            'url': self.url,
            'method': self.method,
            'timeout': self.get_timeout(),
            'max_retries': self.max_retries,
            'has_template': bool(self.template)
        }
