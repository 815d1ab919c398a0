"""SLO 存储

保存 SLO 定义和每次评估产生的状态历史
"""

import json
import logging
import os
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Deque, Dict, Iterable, List, Optional

from ..models.slo import SLODefinition, SLOStatus


class SLORepository:
    """内存 SLO 存储，状态历史可选持久化到 JSON 文件"""

    def __init__(self, definitions: Optional[Iterable[SLODefinition]] = None,
                 persistence_file: Optional[str] = None, history_size: int = 1000):
        """
        Args:
            definitions: 初始 SLO 定义
            persistence_file: 状态历史持久化文件，为None则不持久化
            history_size: 每个 SLO 保留的状态数量
        """
        self.persistence_file = persistence_file
        self.history_size = history_size
        self._definitions: Dict[str, SLODefinition] = {}
        self._history: Dict[str, Deque[SLOStatus]] = {}
        self.logger = logging.getLogger(__name__)

        if definitions:
            self.set_definitions(definitions)
        if self.persistence_file:
            self._load()

    def set_definitions(self, definitions: Iterable[SLODefinition]) -> None:
        """整体替换 SLO 定义，已删除 SLO 的状态历史保留"""
        self._definitions = {definition.id: definition for definition in definitions}

    def save_definition(self, definition: SLODefinition) -> None:
        self._definitions[definition.id] = definition

    def get_definition(self, slo_id: str) -> Optional[SLODefinition]:
        return self._definitions.get(slo_id)

    def find_all(self) -> List[SLODefinition]:
        return list(self._definitions.values())

    def find_enabled(self) -> List[SLODefinition]:
        return [d for d in self._definitions.values() if d.enabled]

    def find_by_service(self, service_id: str) -> List[SLODefinition]:
        return [d for d in self._definitions.values() if d.service_id == service_id]

    def append_status(self, status: SLOStatus) -> None:
        """追加一次评估结果"""
        history = self._history.get(status.slo_id)
        if history is None:
            history = deque(maxlen=self.history_size)
            self._history[status.slo_id] = history
        history.append(status)

        if self.persistence_file:
            self._persist()

    def get_latest_status(self, slo_id: str) -> Optional[SLOStatus]:
        history = self._history.get(slo_id)
        return history[-1] if history else None

    def get_status_history(self, slo_id: str, limit: Optional[int] = None) -> List[SLOStatus]:
        """按时间倒序返回状态历史"""
        history = list(reversed(self._history.get(slo_id, ())))
        if limit:
            history = history[:limit]
        return history

    def _persist(self) -> None:
        try:
            Path(self.persistence_file).parent.mkdir(parents=True, exist_ok=True)
            data = {
                'last_updated': datetime.now().isoformat(),
                'statuses': {
                    slo_id: [status.to_dict() for status in history]
                    for slo_id, history in self._history.items()
                }
            }
            with open(self.persistence_file, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
        except Exception as e:
            self.logger.error(f"保存 SLO 状态失败: {e}")

    def _load(self) -> None:
        if not os.path.exists(self.persistence_file):
            return
        try:
            with open(self.persistence_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            for slo_id, items in data.get('statuses', {}).items():
                history = deque(maxlen=self.history_size)
                history.extend(SLOStatus.from_dict(item) for item in items)
                self._history[slo_id] = history
            self.logger.info(f"从 {self.persistence_file} 加载了 {len(self._history)} 个 SLO 的状态历史")
        except Exception as e:
            self.logger.error(f"加载 SLO 状态失败: {e}")
