"""
Framework-neutral view of an incoming HTTP request.

Adapters (Starlette middleware, FastAPI dependency) build one of these from
their native request type; caveat evaluators only ever see this.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


@dataclass
class RequestContext:
    """The parts of a request that caveats and the gate look at."""
    path: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    query: Dict[str, str] = field(default_factory=dict)
    now_ms: Optional[int] = None   # fixed clock for evaluation; None = wall clock

    def __post_init__(self) -> None:
        # Header lookups are case-insensitive
        self.headers = {k.lower(): v for k, v in dict(self.headers).items()}

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    def current_time_ms(self) -> int:
        if self.now_ms is not None:
            return self.now_ms
        return int(time.time() * 1000)

    @property
    def forwarded_ip(self) -> Optional[str]:
        """First X-Forwarded-For entry, or None when the header is absent."""
        forwarded = self.header("x-forwarded-for")
        if not forwarded:
            return None
        ip = forwarded.split(",")[0].strip()
        return ip or None

    @classmethod
    def from_request(cls, request: Any, now_ms: Optional[int] = None) -> "RequestContext":
        """
        Build a context from a FastAPI/Starlette Request.

        Args:
            request: Starlette Request (or anything with url.path, method,
                headers and query_params).
            now_ms: Optional fixed evaluation time.
        """
        query: Mapping[str, str] = getattr(request, "query_params", None) or {}
        return cls(
            path=request.url.path,
            method=request.method,
            headers=dict(request.headers),
            query=dict(query),
            now_ms=now_ms,
        )
