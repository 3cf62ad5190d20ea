"""
Plain data types shared by the ingestion and retrieval modules.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

Message = Dict[str, str]


@dataclass
class Chunk:
    """One stored segment of a document."""

    id: str
    doc_id: str
    text: str
    embedding: List[float] = field(default_factory=list, repr=False)
    ordinal: int = 0
    score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Caller-facing shape: ``{id, text, doc_id}``."""
        data = {"id": self.id, "text": self.text}
        if self.doc_id:
            data["doc_id"] = self.doc_id
        return data


@dataclass
class SearchHit:
    id: str
    text: str
    doc_id: str
    score: float

    def to_chunk(self) -> Chunk:
        return Chunk(id=self.id, doc_id=self.doc_id, text=self.text, score=self.score)


@dataclass
class IngestionResult:
    doc_id: str
    chunks_inserted: int

    def to_dict(self) -> Dict[str, Any]:
        return {"docId": self.doc_id, "chunksInserted": self.chunks_inserted}


@dataclass
class RetrievalResult:
    answer: str
    chunks: List[Chunk] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"answer": self.answer, "chunks": [c.to_dict() for c in self.chunks]}
