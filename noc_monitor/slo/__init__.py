"""SLO 模块"""

from .calculator import SLOCalculator
from .repository import SLORepository

__all__ = ['SLOCalculator', 'SLORepository']
