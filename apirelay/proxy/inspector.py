"""
Traffic Inspector

Scans inbound requests for suspicious automation and attack markers.
A match is a behavioral signal for the escalator, not a block by
itself.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class RequestContext:
    """Context about an incoming request."""

    client_ip: str
    method: str
    path: str
    query_string: str
    headers: Dict[str, str]
    body: Optional[bytes] = None
    user_agent: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class InspectionResult:
    """Result of the suspicious-activity scan."""

    is_suspicious: bool = False
    indicators: List[str] = field(default_factory=list)

    @property
    def reason(self) -> str:
        return "suspicious: " + ", ".join(self.indicators)


class TrafficInspector:
    """Pattern scan over user agent, path and query string."""

    SUSPICIOUS_PATTERNS = [
        r"bot|crawler|spider|scraper",
        r"automation|selenium|puppeteer",
        r"hack|exploit|attack",
    ]

    def __init__(self, patterns: Optional[List[str]] = None):
        self._patterns = [
            re.compile(p, re.IGNORECASE) for p in (patterns or self.SUSPICIOUS_PATTERNS)
        ]
        self._total_inspected = 0
        self._suspicious = 0

    def inspect(self, context: RequestContext) -> InspectionResult:
        """
        Inspect a request.

        Args:
            context: Request context containing all request details

        Returns:
            InspectionResult listing which field matched which pattern
        """
        self._total_inspected += 1
        targets = {
            "user_agent": context.user_agent or "",
            "path": context.path,
            "query": context.query_string,
        }

        indicators = []
        for name, value in targets.items():
            if not value:
                continue
            for pattern in self._patterns:
                if pattern.search(value):
                    indicators.append(f"{name}:{pattern.pattern}")

        result = InspectionResult(is_suspicious=bool(indicators), indicators=indicators)
        if result.is_suspicious:
            self._suspicious += 1
            logger.warning(
                "suspicious_activity_detected",
                client_ip=context.client_ip,
                user_agent=(context.user_agent or "")[:100],
                path=context.path,
                indicators=indicators,
            )
        return result

    def get_stats(self) -> Dict[str, int]:
        """Get inspector statistics."""
        return {
            "total_inspected": self._total_inspected,
            "suspicious": self._suspicious,
        }
