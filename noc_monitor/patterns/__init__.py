"""模式检测模块"""

from .detector import PatternDetector

__all__ = ['PatternDetector']
