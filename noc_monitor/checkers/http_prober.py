"""HTTP 健康探测器"""

import asyncio
import json
import socket
import time
from typing import Dict, Any, List, Optional, Tuple

import aiohttp

from .base import BaseProber
from ..models.health_check import (
    CheckResult, EvidenceEntry, EvidenceLevel,
    ERROR_TYPE_TIMEOUT, ERROR_TYPE_DNS, ERROR_TYPE_CONNECTION, ERROR_TYPE_CLIENT
)
from ..models.service import ServiceDefinition, ServiceStatus, ExpectedResponse
from ..storage.evidence import BaseEvidenceStore

USER_AGENT = 'NOC-Monitor/1.0'
METHODS_WITH_BODY = ('POST', 'PUT', 'PATCH')


class HttpProber(BaseProber):
    """HTTP 探测器

    按服务配置发送请求并校验响应。校验项全部执行，
    每个失败项都记录到 validation_errors 中。
    """

    def __init__(self, evidence_store: Optional[BaseEvidenceStore] = None,
                 default_timeout_ms: int = 5000):
        """
        初始化 HTTP 探测器

        Args:
            evidence_store: 证据存储，为 None 时不记录证据
            default_timeout_ms: 默认超时（毫秒）
        """
        super().__init__(default_timeout_ms)
        self.evidence_store = evidence_store

    def _build_request(self, definition: ServiceDefinition) -> Tuple[str, Dict[str, Any]]:
        """
        准备请求方法和参数

        Returns:
            tuple: (HTTP方法, session.request 的关键字参数)
        """
        health_check = definition.health_check
        method = (health_check.method if health_check else 'GET').upper()

        headers = {'User-Agent': USER_AGENT}
        if health_check and health_check.headers:
            headers.update(health_check.headers)

        request_kwargs: Dict[str, Any] = {
            'headers': headers,
            'allow_redirects': health_check.follow_redirects if health_check else True
        }

        body = health_check.body if health_check else None
        if body is not None and method in METHODS_WITH_BODY:
            if isinstance(body, str):
                request_kwargs['data'] = body
            else:
                request_kwargs['data'] = json.dumps(body)
                if not any(key.lower() == 'content-type' for key in headers):
                    headers['Content-Type'] = 'application/json'

        return method, request_kwargs

    @staticmethod
    def _is_status_accepted(status_code: int, expected: Optional[ExpectedResponse]) -> bool:
        if expected is not None:
            if expected.status_code is not None:
                return status_code == expected.status_code
            if expected.accepted_status_codes:
                return status_code in expected.accepted_status_codes
        return 200 <= status_code < 300

    def _validate_response(self, status_code: int, response_time_ms: float,
                           headers: Any, body: str,
                           expected: Optional[ExpectedResponse]) -> List[str]:
        """
        校验响应，返回全部失败项

        Args:
            status_code: HTTP状态码
            response_time_ms: 响应时间（毫秒）
            headers: 响应头（大小写不敏感的映射）
            body: 响应体文本
            expected: 期望的响应断言

        Returns:
            List[str]: 校验失败描述列表，为空表示全部通过
        """
        errors = []

        if not self._is_status_accepted(status_code, expected):
            if expected is not None and expected.status_code is not None:
                errors.append(f"状态码不符合期望: 期望 {expected.status_code}, 实际 {status_code}")
            elif expected is not None and expected.accepted_status_codes:
                errors.append(
                    f"状态码 {status_code} 不在允许列表 {expected.accepted_status_codes} 中"
                )
            else:
                errors.append(f"HTTP状态码表示失败: {status_code}")

        if expected is None:
            return errors

        if expected.max_response_time_ms is not None and response_time_ms > expected.max_response_time_ms:
            errors.append(
                f"响应时间 {response_time_ms:.0f}ms 超过上限 {expected.max_response_time_ms:.0f}ms"
            )

        for header_name in expected.required_headers:
            if header_name not in headers:
                errors.append(f"缺少响应头: {header_name}")

        if expected.body_contains and expected.body_contains not in body:
            errors.append(f"响应体不包含期望内容: {expected.body_contains}")

        return errors

    async def probe(self, definition: ServiceDefinition) -> CheckResult:
        """
        对服务执行一次 HTTP 探测

        Args:
            definition: 服务定义

        Returns:
            CheckResult: 探测结果，传输失败为 down，校验失败为 degraded
        """
        timeout_ms = self.get_timeout_ms(definition)
        method, request_kwargs = self._build_request(definition)
        expected = definition.health_check.expected_response if definition.health_check else None

        status_code: Optional[int] = None
        error: Optional[str] = None
        error_type: Optional[str] = None
        validation_errors: List[str] = []

        start_time = time.time()
        try:
            timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, definition.url, **request_kwargs) as response:
                    body = await response.text(errors='replace')
                    response_time_ms = (time.time() - start_time) * 1000
                    status_code = response.status
                    validation_errors = self._validate_response(
                        status_code, response_time_ms, response.headers, body, expected
                    )
        except asyncio.TimeoutError:
            error = f"请求超时: 超过 {timeout_ms}ms"
            error_type = ERROR_TYPE_TIMEOUT
        except aiohttp.ClientConnectorError as e:
            if isinstance(e.os_error, socket.gaierror):
                error = f"DNS解析失败: {e}"
                error_type = ERROR_TYPE_DNS
            else:
                error = f"连接失败: {e}"
                error_type = ERROR_TYPE_CONNECTION
        except aiohttp.ClientError as e:
            error = f"HTTP客户端错误: {e}"
            error_type = ERROR_TYPE_CLIENT
        except Exception as e:
            error = f"HTTP探测异常: {e}"
            error_type = ERROR_TYPE_CLIENT

        response_time_ms = round((time.time() - start_time) * 1000, 2)
        name = definition.name or definition.id

        if error is not None:
            success = False
            status = ServiceStatus.DOWN
            message = f"服务 {name} 不可用: {error}"
        elif validation_errors:
            success = False
            status = ServiceStatus.DEGRADED
            message = f"服务 {name} 响应校验失败: {', '.join(validation_errors)}"
        else:
            success = True
            status = ServiceStatus.UP
            message = f"服务 {name} 正常 - {response_time_ms:.0f}ms ({status_code})"

        result = CheckResult(
            service_id=definition.id,
            service_name=name,
            url=definition.url,
            method=method,
            success=success,
            status=status,
            response_time_ms=response_time_ms,
            status_code=status_code,
            message=message,
            error=error,
            error_type=error_type,
            validation_errors=validation_errors,
            critical=definition.critical
        )

        if success:
            self.logger.debug(message)
        else:
            self.logger.warning(message)

        self._record_evidence(result, expected)
        return result

    def _record_evidence(self, result: CheckResult, expected: Optional[ExpectedResponse]) -> None:
        """写入证据记录，失败只记录日志"""
        if self.evidence_store is None:
            return

        max_response_time = expected.max_response_time_ms if expected else None
        if not result.success:
            level = EvidenceLevel.HIGH
        elif max_response_time and result.response_time_ms > max_response_time * 0.8:
            level = EvidenceLevel.MEDIUM
        else:
            level = EvidenceLevel.LOW

        entry = EvidenceEntry(
            service_id=result.service_id,
            service_name=result.service_name,
            timestamp=result.timestamp,
            success=result.success,
            status=result.status,
            response_time_ms=result.response_time_ms,
            status_code=result.status_code,
            level=level,
            message=result.message
        )

        try:
            self.evidence_store.save_evidence(entry)
        except Exception as e:
            self.logger.error(f"保存服务 {result.service_id} 的探测证据失败: {e}")
