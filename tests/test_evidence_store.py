"""证据存储测试"""

import json
import os
import tempfile
from datetime import datetime, timedelta

import pytest

from noc_monitor.models.health_check import EvidenceEntry, EvidenceLevel
from noc_monitor.models.service import ServiceStatus
from noc_monitor.storage.evidence import InMemoryEvidenceStore, JsonLinesEvidenceStore
from noc_monitor.utils.exceptions import EvidenceStoreError

BASE_TIME = datetime(2024, 5, 1, 0, 0, 0)


def make_entry(minutes: int, service_id: str = 'api', success: bool = True) -> EvidenceEntry:
    return EvidenceEntry(
        service_id=service_id,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        success=success,
        status=ServiceStatus.UP if success else ServiceStatus.DOWN,
        response_time_ms=42.0,
        status_code=200 if success else 503,
        level=EvidenceLevel.LOW if success else EvidenceLevel.HIGH
    )


class TestInMemoryEvidenceStore:
    """内存证据存储测试类"""

    def setup_method(self):
        self.store = InMemoryEvidenceStore(max_entries_per_service=5)

    def test_query_range_sorted(self):
        """测试按时间范围查询并升序返回"""
        for minute in (5, 1, 3, 9):
            self.store.save_evidence(make_entry(minute))
        self.store.save_evidence(make_entry(2, service_id='other'))

        result = self.store.query_evidence(
            'api', BASE_TIME + timedelta(minutes=2), BASE_TIME + timedelta(minutes=6)
        )

        assert [e.timestamp.minute for e in result] == [3, 5]

    def test_open_ended_query(self):
        self.store.save_evidence(make_entry(1))
        self.store.save_evidence(make_entry(100))

        assert len(self.store.query_evidence('api', BASE_TIME)) == 2

    def test_prune(self):
        """测试清理早于指定时间的证据"""
        for minute in (1, 2, 10):
            self.store.save_evidence(make_entry(minute))
        self.store.save_evidence(make_entry(3, service_id='other'))

        removed = self.store.prune(BASE_TIME + timedelta(minutes=5))

        assert removed == 3
        assert self.store.count() == 1
        assert self.store.query_evidence('api', BASE_TIME)[0].timestamp.minute == 10

    def test_capacity(self):
        for minute in range(8):
            self.store.save_evidence(make_entry(minute))

        assert self.store.count('api') == 5
        assert self.store.count() == 5
        assert self.store.query_evidence('api', BASE_TIME)[0].timestamp.minute == 3


class TestJsonLinesEvidenceStore:
    """JSON Lines 证据存储测试类"""

    def test_append_and_query(self):
        """测试追加写入和查询"""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, 'data', 'evidence.jsonl')
            store = JsonLinesEvidenceStore(path)
            store.save_evidence(make_entry(1))
            store.save_evidence(make_entry(2, success=False))
            store.save_evidence(make_entry(3, service_id='other'))

            with open(path, 'r', encoding='utf-8') as f:
                lines = f.readlines()
            assert len(lines) == 3
            assert json.loads(lines[1])['level'] == 'high'

            result = store.query_evidence('api', BASE_TIME)
            assert len(result) == 2
            assert result[1].status == ServiceStatus.DOWN
            assert result[1].status_code == 503

    def test_missing_file(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            store = JsonLinesEvidenceStore(os.path.join(temp_dir, 'evidence.jsonl'))

            assert store.query_evidence('api', BASE_TIME) == []

    def test_corrupt_lines_skipped(self):
        """测试损坏的行被跳过"""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, 'evidence.jsonl')
            store = JsonLinesEvidenceStore(path)
            store.save_evidence(make_entry(1))
            with open(path, 'a', encoding='utf-8') as f:
                f.write('not json\n\n')
            store.save_evidence(make_entry(2))

            assert len(store.query_evidence('api', BASE_TIME)) == 2

    def test_write_failure_raises(self):
        """测试写入失败时抛出证据存储异常"""
        with tempfile.TemporaryDirectory() as temp_dir:
            store = JsonLinesEvidenceStore(os.path.join(temp_dir, 'evidence.jsonl'))
            # 路径被目录占用时无法写入
            os.makedirs(store.file_path)

            with pytest.raises(EvidenceStoreError):
                store.save_evidence(make_entry(1))

    def test_prune_rewrites_file(self):
        """测试清理删除过期和损坏的行，保留新记录"""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, 'evidence.jsonl')
            store = JsonLinesEvidenceStore(path)
            store.save_evidence(make_entry(1))
            store.save_evidence(make_entry(2, service_id='other'))
            with open(path, 'a', encoding='utf-8') as f:
                f.write('not json\n')
            store.save_evidence(make_entry(30))
            store.save_evidence(make_entry(31, success=False))

            removed = store.prune(BASE_TIME + timedelta(minutes=10))

            assert removed == 3
            assert not os.path.exists(path + '.tmp')
            with open(path, 'r', encoding='utf-8') as f:
                lines = f.readlines()
            assert len(lines) == 2
            result = store.query_evidence('api', BASE_TIME)
            assert [e.timestamp.minute for e in result] == [30, 31]

            # 清理后继续追加
            store.save_evidence(make_entry(32))
            assert len(store.query_evidence('api', BASE_TIME)) == 3

    def test_prune_keeps_unfinished_tail(self):
        """测试末尾未写完的行原样保留"""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, 'evidence.jsonl')
            store = JsonLinesEvidenceStore(path)
            store.save_evidence(make_entry(1))
            store.save_evidence(make_entry(30))
            with open(path, 'a', encoding='utf-8') as f:
                f.write('{"service_id": "api"')

            removed = store.prune(BASE_TIME + timedelta(minutes=10))

            assert removed == 1
            with open(path, 'r', encoding='utf-8') as f:
                content = f.read()
            assert content.endswith('{"service_id": "api"')

    def test_prune_missing_file(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            store = JsonLinesEvidenceStore(os.path.join(temp_dir, 'evidence.jsonl'))

            assert store.prune(BASE_TIME) == 0
