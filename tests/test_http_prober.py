"""HTTP 探测器测试"""

import asyncio
import json
import socket
from datetime import datetime
from unittest.mock import MagicMock

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from multidict import CIMultiDict

from noc_monitor.checkers.http_prober import HttpProber, USER_AGENT
from noc_monitor.models.health_check import (
    ERROR_TYPE_CONNECTION, ERROR_TYPE_TIMEOUT, EvidenceLevel
)
from noc_monitor.models.service import (
    ExpectedResponse, HealthCheckConfig, ServiceDefinition, ServiceStatus
)
from noc_monitor.storage.evidence import InMemoryEvidenceStore
from noc_monitor.utils.exceptions import EvidenceStoreError


def build_app() -> web.Application:
    """测试用的 HTTP 服务"""
    received = {}

    async def health(request):
        received['user_agent'] = request.headers.get('User-Agent')
        return web.json_response({'status': 'ok'}, headers={'X-Request-Id': 'abc'})

    async def echo(request):
        received['body'] = await request.text()
        received['content_type'] = request.headers.get('Content-Type')
        received['token'] = request.headers.get('Authorization')
        return web.Response(status=202, text='accepted')

    async def broken(request):
        return web.Response(status=503, text='maintenance')

    async def slow(request):
        await asyncio.sleep(1)
        return web.Response(text='late')

    app = web.Application()
    app['received'] = received
    app.router.add_get('/health', health)
    app.router.add_post('/echo', echo)
    app.router.add_get('/broken', broken)
    app.router.add_get('/slow', slow)
    return app


def make_definition(url: str, **health_check) -> ServiceDefinition:
    return ServiceDefinition(
        id='svc',
        name='测试服务',
        url=url,
        health_check=HealthCheckConfig(**health_check) if health_check else None
    )


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(('127.0.0.1', 0))
        return sock.getsockname()[1]


class TestHttpProber:
    """HTTP 探测器测试类"""

    def setup_method(self):
        self.store = InMemoryEvidenceStore()
        self.prober = HttpProber(evidence_store=self.store, default_timeout_ms=2000)

    @pytest.mark.asyncio
    async def test_successful_probe(self):
        """测试正常响应"""
        app = build_app()
        server = TestServer(app)
        await server.start_server()
        try:
            result = await self.prober.probe(make_definition(str(server.make_url('/health'))))
        finally:
            await server.close()

        assert result.success
        assert result.status == ServiceStatus.UP
        assert result.status_code == 200
        assert result.response_time_ms >= 0
        assert result.validation_errors == []
        assert app['received']['user_agent'] == USER_AGENT

    @pytest.mark.asyncio
    async def test_all_assertions_reported(self):
        """测试校验失败时全部失败项都被记录"""
        server = TestServer(build_app())
        await server.start_server()
        try:
            definition = make_definition(
                str(server.make_url('/broken')),
                expected_response=ExpectedResponse(
                    status_code=200,
                    body_contains='healthy',
                    required_headers=['X-Request-Id']
                )
            )
            result = await self.prober.probe(definition)
        finally:
            await server.close()

        assert not result.success
        assert result.status == ServiceStatus.DEGRADED
        assert result.status_code == 503
        assert len(result.validation_errors) == 3
        assert result.error is None

    @pytest.mark.asyncio
    async def test_non_2xx_without_expectation(self):
        server = TestServer(build_app())
        await server.start_server()
        try:
            result = await self.prober.probe(make_definition(str(server.make_url('/broken'))))
        finally:
            await server.close()

        assert result.status == ServiceStatus.DEGRADED
        assert 'HTTP状态码表示失败: 503' in result.validation_errors

    @pytest.mark.asyncio
    async def test_post_with_json_body(self):
        """测试 POST 请求体和自定义请求头"""
        app = build_app()
        server = TestServer(app)
        await server.start_server()
        try:
            definition = make_definition(
                str(server.make_url('/echo')),
                method='post',
                headers={'Authorization': 'Bearer token'},
                body={'probe': True},
                expected_response=ExpectedResponse(accepted_status_codes=[200, 202])
            )
            result = await self.prober.probe(definition)
        finally:
            await server.close()

        assert result.success
        assert result.method == 'POST'
        received = app['received']
        assert json.loads(received['body']) == {'probe': True}
        assert received['content_type'] == 'application/json'
        assert received['token'] == 'Bearer token'

    @pytest.mark.asyncio
    async def test_timeout(self):
        """测试请求超时"""
        server = TestServer(build_app())
        await server.start_server()
        try:
            result = await self.prober.probe(
                make_definition(str(server.make_url('/slow')), timeout_ms=100)
            )
        finally:
            await server.close()

        assert result.status == ServiceStatus.DOWN
        assert result.error_type == ERROR_TYPE_TIMEOUT
        assert result.is_timeout
        assert result.status_code is None

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        """测试连接被拒绝"""
        result = await self.prober.probe(make_definition(f'http://127.0.0.1:{unused_port()}/'))

        assert result.status == ServiceStatus.DOWN
        assert result.error_type == ERROR_TYPE_CONNECTION
        assert result.is_connection_failure

    @pytest.mark.asyncio
    async def test_evidence_recorded(self):
        """测试每次探测都写入证据"""
        server = TestServer(build_app())
        await server.start_server()
        try:
            await self.prober.probe(make_definition(str(server.make_url('/health'))))
            await self.prober.probe(make_definition(str(server.make_url('/broken'))))
        finally:
            await server.close()

        assert self.store.count('svc') == 2
        levels = [e.level for e in self.store.query_evidence('svc', datetime.min)]
        assert levels == [EvidenceLevel.LOW, EvidenceLevel.HIGH]

    @pytest.mark.asyncio
    async def test_evidence_failure_does_not_break_probe(self):
        store = MagicMock()
        store.save_evidence.side_effect = EvidenceStoreError("磁盘已满")
        prober = HttpProber(evidence_store=store)

        result = await prober.probe(make_definition(f'http://127.0.0.1:{unused_port()}/'))

        assert result.status == ServiceStatus.DOWN
        store.save_evidence.assert_called_once()


class TestResponseValidation:
    """响应校验测试类"""

    def setup_method(self):
        self.prober = HttpProber()

    def test_status_code_rules(self):
        assert HttpProber._is_status_accepted(204, None)
        assert not HttpProber._is_status_accepted(301, None)
        assert HttpProber._is_status_accepted(404, ExpectedResponse(status_code=404))
        assert not HttpProber._is_status_accepted(
            200, ExpectedResponse(accepted_status_codes=[201, 202])
        )

    def test_header_check_is_case_insensitive(self):
        headers = CIMultiDict({'x-request-id': '1'})

        errors = self.prober._validate_response(
            200, 10, headers, '', ExpectedResponse(required_headers=['X-Request-Id'])
        )

        assert errors == []

    def test_response_time_limit(self):
        errors = self.prober._validate_response(
            200, 1500, CIMultiDict(), 'ok', ExpectedResponse(max_response_time_ms=1000)
        )

        assert len(errors) == 1
        assert '超过上限' in errors[0]

    def test_timeout_resolution(self):
        definition = make_definition('http://example.com', timeout_ms=750)

        assert self.prober.get_timeout_ms(definition) == 750
        assert self.prober.get_timeout_ms(make_definition('http://example.com')) == 5000
