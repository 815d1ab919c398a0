"""探测证据存储

探测器每次探测写入一条证据，SLO 计算器按服务和时间范围查询。
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from datetime import datetime
from pathlib import Path
from typing import Deque, Dict, List, Optional

from ..models.health_check import EvidenceEntry
from ..utils.exceptions import EvidenceStoreError


class BaseEvidenceStore(ABC):
    """证据存储抽象基类"""

    @abstractmethod
    def save_evidence(self, entry: EvidenceEntry) -> None:
        """
        保存一条证据

        Raises:
            EvidenceStoreError: 写入失败
        """

    @abstractmethod
    def query_evidence(self, service_id: str, since: datetime,
                       until: Optional[datetime] = None) -> List[EvidenceEntry]:
        """
        查询服务在 [since, until] 范围内的证据，按时间升序返回
        """

    @abstractmethod
    def prune(self, before: datetime) -> int:
        """
        删除早于 before 的证据

        Returns:
            删除的记录数
        """


class InMemoryEvidenceStore(BaseEvidenceStore):
    """内存证据存储，每个服务保留固定数量的最近记录"""

    def __init__(self, max_entries_per_service: int = 50000):
        self.max_entries_per_service = max_entries_per_service
        self._entries: Dict[str, Deque[EvidenceEntry]] = defaultdict(
            lambda: deque(maxlen=self.max_entries_per_service)
        )

    def save_evidence(self, entry: EvidenceEntry) -> None:
        self._entries[entry.service_id].append(entry)

    def query_evidence(self, service_id: str, since: datetime,
                       until: Optional[datetime] = None) -> List[EvidenceEntry]:
        # 先复制快照，查询可以在线程池中执行
        entries = list(self._entries.get(service_id, ()))
        result = [
            e for e in entries
            if e.timestamp >= since and (until is None or e.timestamp <= until)
        ]
        result.sort(key=lambda e: e.timestamp)
        return result

    def prune(self, before: datetime) -> int:
        # 证据按探测时间追加，只需从队首弹出
        removed = 0
        for entries in list(self._entries.values()):
            while entries and entries[0].timestamp < before:
                entries.popleft()
                removed += 1
        return removed

    def count(self, service_id: Optional[str] = None) -> int:
        if service_id is not None:
            return len(self._entries.get(service_id, ()))
        return sum(len(entries) for entries in self._entries.values())


class JsonLinesEvidenceStore(BaseEvidenceStore):
    """JSON Lines 文件证据存储，每行一条记录

    写入只追加；prune 重写文件删除过期记录。查询和清理可以在线程池中执行，
    文件替换与追加写入通过锁互斥。
    """

    def __init__(self, file_path: str):
        """
        Args:
            file_path: 证据文件路径，目录不存在时自动创建
        """
        self.file_path = file_path
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        Path(self.file_path).parent.mkdir(parents=True, exist_ok=True)

    def save_evidence(self, entry: EvidenceEntry) -> None:
        line = json.dumps(entry.to_dict(), ensure_ascii=False) + '\n'
        try:
            with self._lock, open(self.file_path, 'a', encoding='utf-8') as f:
                f.write(line)
        except OSError as e:
            raise EvidenceStoreError(f"写入证据文件失败: {self.file_path}", cause=e)

    def _parse_line(self, line: str, line_no: int) -> Optional[EvidenceEntry]:
        line = line.strip()
        if not line:
            return None
        try:
            return EvidenceEntry.from_dict(json.loads(line))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            self.logger.warning(f"跳过损坏的证据记录: {self.file_path}:{line_no}")
            return None

    def query_evidence(self, service_id: str, since: datetime,
                       until: Optional[datetime] = None) -> List[EvidenceEntry]:
        if not os.path.exists(self.file_path):
            return []

        # 不包含目标服务ID的行不做完整解析
        needle = json.dumps(service_id, ensure_ascii=False)
        result = []
        try:
            with open(self.file_path, 'r', encoding='utf-8') as f:
                for line_no, line in enumerate(f, start=1):
                    if needle not in line:
                        continue
                    entry = self._parse_line(line, line_no)
                    if entry is None or entry.service_id != service_id:
                        continue
                    if entry.timestamp < since:
                        continue
                    if until is not None and entry.timestamp > until:
                        continue
                    result.append(entry)
        except OSError as e:
            raise EvidenceStoreError(f"读取证据文件失败: {self.file_path}", cause=e)

        result.sort(key=lambda e: e.timestamp)
        return result

    def prune(self, before: datetime) -> int:
        """
        删除早于 before 的证据和损坏的行

        先在锁外读取并过滤，替换文件前在锁内补上期间追加的记录。

        Raises:
            EvidenceStoreError: 读写文件失败
        """
        if not os.path.exists(self.file_path):
            return 0

        kept: List[str] = []
        removed = 0
        temp_path = f"{self.file_path}.tmp"
        try:
            with open(self.file_path, 'r', encoding='utf-8') as f:
                line_no = 0
                while True:
                    offset = f.tell()
                    line = f.readline()
                    # 末尾尚未写完的行留到锁内原样复制
                    if not line.endswith('\n'):
                        break
                    line_no += 1
                    entry = self._parse_line(line, line_no)
                    if entry is None or entry.timestamp < before:
                        if line.strip():
                            removed += 1
                        continue
                    kept.append(line)

            with self._lock:
                with open(self.file_path, 'r', encoding='utf-8') as f:
                    f.seek(offset)
                    appended = f.read()
                with open(temp_path, 'w', encoding='utf-8') as f:
                    f.writelines(kept)
                    f.write(appended)
                os.replace(temp_path, self.file_path)
        except OSError as e:
            raise EvidenceStoreError(f"清理证据文件失败: {self.file_path}", cause=e)

        if removed:
            self.logger.info(f"证据文件清理完成，删除 {removed} 条过期或损坏的记录")
        return removed
