"""存储模块"""

from .evidence import BaseEvidenceStore, InMemoryEvidenceStore, JsonLinesEvidenceStore

__all__ = ['BaseEvidenceStore', 'InMemoryEvidenceStore', 'JsonLinesEvidenceStore']
