"""
In-memory gate outcome tracker.

Counts pass-throughs, challenges, admissions and rejections (by reason)
overall and per endpoint, plus a short list of recent admissions.
Rejection reasons live here and in logs only; clients never see them.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from .errors import RejectReason


@dataclass
class AdmissionRecord:
    """A single admitted (paid) request."""
    endpoint: str
    payment_hash: str
    timestamp: float  # milliseconds since epoch


class GateStats:
    """In-memory statistics for one gate."""

    def __init__(self, max_recent: int = 100):
        self.max_recent = max_recent

        self.total_requests: int = 0
        self.passed_through: int = 0
        self.challenges_issued: int = 0
        self.admitted: int = 0
        self.revenue_sats: int = 0
        self.rejections: Dict[str, int] = {}
        self._credited: Set[str] = set()   # payment hashes already counted as revenue

        # path → { requests, challenges, admitted }
        self._endpoints: Dict[str, Dict[str, int]] = {}
        self._recent: List[AdmissionRecord] = []

    def _endpoint(self, endpoint: str) -> Dict[str, int]:
        if endpoint not in self._endpoints:
            self._endpoints[endpoint] = {"requests": 0, "challenges": 0, "admitted": 0}
        return self._endpoints[endpoint]

    def record_pass_through(self, endpoint: str) -> None:
        self.total_requests += 1
        self.passed_through += 1

    def record_challenge(
        self,
        endpoint: str,
        reason: Optional[RejectReason] = None,
    ) -> None:
        """Record a 402, with the rejection reason when a credential was presented."""
        self.total_requests += 1
        self.challenges_issued += 1
        ep = self._endpoint(endpoint)
        ep["requests"] += 1
        ep["challenges"] += 1
        if reason is not None:
            self.rejections[reason.value] = self.rejections.get(reason.value, 0) + 1

    def record_admission(self, endpoint: str, payment_hash: str, amount_sats: int = 0) -> None:
        self.total_requests += 1
        self.admitted += 1
        if payment_hash not in self._credited:
            self._credited.add(payment_hash)
            self.revenue_sats += amount_sats
        ep = self._endpoint(endpoint)
        ep["requests"] += 1
        ep["admitted"] += 1

        self._recent.append(
            AdmissionRecord(
                endpoint=endpoint,
                payment_hash=payment_hash,
                timestamp=time.time() * 1000,
            )
        )
        if len(self._recent) > self.max_recent:
            self._recent = self._recent[-self.max_recent:]

    def to_dict(self) -> Dict[str, Any]:
        recent = [
            {
                "endpoint": r.endpoint,
                "paymentHash": r.payment_hash,
                "timestamp": r.timestamp,
            }
            for r in self._recent[-20:]
        ]
        recent.reverse()

        return {
            "totalRequests": self.total_requests,
            "passedThrough": self.passed_through,
            "challengesIssued": self.challenges_issued,
            "admitted": self.admitted,
            "paidTokens": len(self._credited),
            "revenueSats": self.revenue_sats,
            "rejections": dict(self.rejections),
            "endpoints": {path: dict(data) for path, data in self._endpoints.items()},
            "recentAdmissions": recent,
        }
