"""
Cache data model.

A CacheEntry aggregates every query-string variant of one (identity, URL)
pair and is the unit stored in the indexed backend.
"""

import base64
import json
from dataclasses import dataclass, field
from typing import Dict, List, NewType, Optional, Tuple


CacheKey = NewType("CacheKey", int)
QueryKey = NewType("QueryKey", int)

# Identity used for viewers that are not logged in
ANONYMOUS = "0"

Header = Tuple[str, str]


@dataclass
class CacheRecord:
    """One stored response variant."""
    headers: List[Header]
    body: bytes
    compressed: bool = False
    request_uri: str = ""

    def to_dict(self) -> Dict:
        return {
            "headers": [list(h) for h in self.headers],
            "body": base64.b64encode(self.body).decode("ascii"),
            "compressed": self.compressed,
            "request_uri": self.request_uri,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "CacheRecord":
        return cls(
            headers=[(str(name), str(value)) for name, value in data.get("headers", [])],
            body=base64.b64decode(data.get("body", "")),
            compressed=bool(data.get("compressed", False)),
            request_uri=data.get("request_uri", ""),
        )


@dataclass
class CacheEntry:
    """All query variants cached for one CacheKey."""
    variants: Dict[QueryKey, CacheRecord] = field(default_factory=dict)

    def get(self, query_key: QueryKey) -> Optional[CacheRecord]:
        return self.variants.get(query_key)

    def __contains__(self, query_key: QueryKey) -> bool:
        return query_key in self.variants

    def __len__(self) -> int:
        return len(self.variants)

    def serialize(self) -> bytes:
        payload = {str(k): record.to_dict() for k, record in self.variants.items()}
        return json.dumps(payload).encode("utf-8")

    @classmethod
    def deserialize(cls, data: bytes) -> "CacheEntry":
        payload = json.loads(data.decode("utf-8"))
        return cls(variants={
            QueryKey(int(k)): CacheRecord.from_dict(v) for k, v in payload.items()
        })


@dataclass
class RequestContext:
    """Everything the cache derives once per request."""
    identity: str
    url: str
    path: str
    host: str
    query_string: str
    request_uri: str
    request_key: CacheKey
    query_key: QueryKey

    @property
    def is_authenticated(self) -> bool:
        return self.identity != ANONYMOUS


@dataclass
class StatsSnapshot:
    """Point-in-time view of hit/miss statistics."""
    hits: int = 0
    misses: int = 0
    avg: float = 0.0
    pages: Optional[int] = None

    @property
    def total(self) -> int:
        return self.hits + self.misses

    @property
    def hits_pct(self) -> float:
        return self.hits / self.total * 100 if self.total > 0 else 0

    @property
    def misses_pct(self) -> float:
        return self.misses / self.total * 100 if self.total > 0 else 0

    def to_dict(self) -> Dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "avg": round(self.avg, 4),
            "hits_pct": round(self.hits_pct),
            "misses_pct": round(self.misses_pct),
            "pages": self.pages,
        }
