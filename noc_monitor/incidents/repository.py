"""事件单存储

存储层只负责保存和查询，"每个服务最多一个活动事件单"由事件单管理器保证。
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from copy import deepcopy
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from ..models.incident import Incident


class BaseIncidentRepository(ABC):
    """事件单存储抽象基类"""

    @abstractmethod
    def save(self, incident: Incident) -> None:
        """新增或更新事件单"""

    @abstractmethod
    def get(self, incident_id: str) -> Optional[Incident]:
        """按ID获取事件单"""

    @abstractmethod
    def find_active_by_service(self, service_id: str) -> Optional[Incident]:
        """获取服务当前的活动事件单"""

    @abstractmethod
    def find_by_service(self, service_id: str) -> List[Incident]:
        """获取服务的全部事件单"""

    @abstractmethod
    def find_all(self) -> List[Incident]:
        """获取全部事件单"""

    @abstractmethod
    def delete(self, incident_id: str) -> bool:
        """删除事件单"""


class IncidentRepository(BaseIncidentRepository):
    """内存事件单存储，可选 JSON 文件持久化

    返回的事件单是副本，修改后需要调用 save 写回。
    """

    def __init__(self, persistence_file: Optional[str] = None):
        self.persistence_file = persistence_file
        self._incidents: Dict[str, Incident] = {}
        self.logger = logging.getLogger(__name__)

        if self.persistence_file:
            self._load()

    def save(self, incident: Incident) -> None:
        self._incidents[incident.id] = deepcopy(incident)
        if self.persistence_file:
            self._persist()

    def get(self, incident_id: str) -> Optional[Incident]:
        incident = self._incidents.get(incident_id)
        return deepcopy(incident) if incident else None

    def find_active_by_service(self, service_id: str) -> Optional[Incident]:
        for incident in self._incidents.values():
            if incident.service_id == service_id and incident.is_active:
                return deepcopy(incident)
        return None

    def find_by_service(self, service_id: str) -> List[Incident]:
        incidents = [i for i in self._incidents.values() if i.service_id == service_id]
        return [deepcopy(i) for i in sorted(incidents, key=lambda i: i.created_at, reverse=True)]

    def find_all(self) -> List[Incident]:
        incidents = sorted(self._incidents.values(), key=lambda i: i.created_at, reverse=True)
        return [deepcopy(i) for i in incidents]

    def delete(self, incident_id: str) -> bool:
        removed = self._incidents.pop(incident_id, None) is not None
        if removed and self.persistence_file:
            self._persist()
        return removed

    def _persist(self) -> None:
        try:
            Path(self.persistence_file).parent.mkdir(parents=True, exist_ok=True)
            data = {
                'last_updated': datetime.now().isoformat(),
                'incidents': [incident.to_dict() for incident in self._incidents.values()]
            }
            with open(self.persistence_file, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
        except Exception as e:
            self.logger.error(f"保存事件单失败: {e}")

    def _load(self) -> None:
        if not os.path.exists(self.persistence_file):
            return
        try:
            with open(self.persistence_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
            for item in data.get('incidents', []):
                incident = Incident.from_dict(item)
                self._incidents[incident.id] = incident
            self.logger.info(f"从 {self.persistence_file} 加载了 {len(self._incidents)} 个事件单")
        except Exception as e:
            self.logger.error(f"加载事件单失败: {e}")
