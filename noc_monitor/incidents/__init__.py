"""事件单模块"""

from .manager import IncidentManager
from .repository import BaseIncidentRepository, IncidentRepository

__all__ = ['IncidentManager', 'BaseIncidentRepository', 'IncidentRepository']
