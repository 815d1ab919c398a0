"""探测器模块"""

from .base import BaseProber
from .http_prober import HttpProber

__all__ = ['BaseProber', 'HttpProber']
