from __future__ import annotations

import json
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Pattern, Union
from urllib.parse import parse_qs, urlsplit

from netcheck.exchanges import CapturedExchange, CapturedRequest
from netcheck.rules import (
    BODY_EXCERPT_CHARS,
    DEFAULT_ROUTES,
    RoutePattern,
    Severity,
    Violation,
    ViolationKind,
    find_route,
)

logger = logging.getLogger(__name__)

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

RECOMMENDATIONS = {
    "high": "Fix HIGH severity violations immediately - these indicate broken API contracts",
    ViolationKind.MISSING_AUTHENTICATION: "Ensure all API requests include proper Bearer token authentication",
    ViolationKind.INVALID_ERROR_FORMAT: 'Standardize error response format to include "error" field with string message',
    ViolationKind.UNEXPECTED_STATUS_CODE: "Review API endpoints returning unexpected status codes",
}


@dataclass
class ValidatorConfig:
    base_url: str = "http://localhost:3000"
    log_requests: bool = True
    log_responses: bool = True
    validate_response_bodies: bool = True


@dataclass
class NetworkSummary:
    total_requests: int
    total_responses: int
    api_requests: int
    violations: int
    violations_by_severity: Dict[str, int] = field(default_factory=dict)
    start: int = 0
    end: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRequests": self.total_requests,
            "totalResponses": self.total_responses,
            "apiRequests": self.api_requests,
            "violations": self.violations,
            "violationsBySeverity": dict(self.violations_by_severity),
            "timespan": {"start": self.start, "end": self.end},
        }


def is_json_api(url: str) -> bool:
    return "/api/" in url


class ContractValidator:
    """
    Accumulates captured API traffic and checks it against a route table.

    Nothing here raises on bad traffic: every contract problem becomes a
    `Violation` in `self.violations`. Callers decide whether to fail.
    """

    def __init__(self, routes: Optional[Iterable[RoutePattern]] = None, config: Optional[ValidatorConfig] = None):
        self.routes = tuple(DEFAULT_ROUTES if routes is None else routes)
        self.config = config or ValidatorConfig()
        self.requests: List[CapturedRequest] = []
        self.responses: List[CapturedExchange] = []
        self.violations: List[Violation] = []

    # ---- recording ----

    def record_request(self, request: CapturedRequest) -> None:
        self.requests.append(request)
        if self.config.log_requests:
            logger.info("API request: %s %s", request.method, request.url)

    def record_response(self, exchange: CapturedExchange) -> None:
        self.responses.append(exchange)
        if self.config.log_responses:
            logger.info("API response: %s %s %s", exchange.status, exchange.method, exchange.url)
        self._validate(exchange)

    def record(self, exchange: CapturedExchange) -> None:
        self.record_request(exchange.request())
        self.record_response(exchange)

    def _add(self, violation: Violation) -> None:
        self.violations.append(violation)
        logger.warning(
            "API contract violation [%s] %s: %s %s - %s",
            violation.severity.value,
            violation.kind.value,
            violation.method,
            violation.url,
            violation.issue,
        )

    # ---- per-exchange checks ----

    def _validate(self, exchange: CapturedExchange) -> None:
        # First matching route wins; traffic without a route is never flagged.
        route = find_route(self.routes, exchange.url, exchange.method)
        if route is None:
            logger.debug("No validation pattern for %s %s", exchange.method, exchange.url)
            return

        # Order matters for the violation log: status, then body, then headers.
        self._check_status(exchange, route)
        if self.config.validate_response_bodies and exchange.body:
            self._check_body(exchange, route)
        self._check_headers(exchange)

    def _check_status(self, exchange: CapturedExchange, route: RoutePattern) -> None:
        if route.accepts_status(exchange.status):
            logger.debug("Status valid: %s %s returned %s", exchange.method, exchange.url, exchange.status)
            return

        expected_errors = sorted(route.expected_error_statuses)
        self._add(
            Violation.for_exchange(
                exchange,
                ViolationKind.UNEXPECTED_STATUS_CODE,
                Severity.HIGH,
                f"Returned {exchange.status}, expected {route.expected_success_status}"
                f" or {', '.join(map(str, expected_errors)) or 'N/A'}",
                route=route.name,
                expected_success=route.expected_success_status,
                expected_errors=expected_errors,
            )
        )

    def _check_body(self, exchange: CapturedExchange, route: RoutePattern) -> None:
        # Deeply nested bodies blow the decoder's recursion limit; treat them as unparseable.
        try:
            parsed = json.loads(exchange.body)
        except (ValueError, RecursionError) as e:
            if exchange.status < 400:
                self._add(
                    Violation.for_exchange(
                        exchange,
                        ViolationKind.INVALID_JSON_RESPONSE,
                        Severity.HIGH,
                        "Response body is not valid JSON",
                        parse_error=str(e),
                    )
                )
            else:
                # Error bodies are not required to be JSON.
                logger.debug("Non-JSON error body tolerated: %s %s", exchange.method, exchange.url)
            return

        # Error responses must look like {"error": "..."}.
        if exchange.status >= 400:
            error = parsed.get("error") if isinstance(parsed, dict) else None
            if not isinstance(error, str) or not error:
                self._add(
                    Violation.for_exchange(
                        exchange,
                        ViolationKind.INVALID_ERROR_FORMAT,
                        Severity.MEDIUM,
                        "Error response missing or invalid error field",
                        expected_format='{ "error": "string" }',
                        actual_body=exchange.body[:BODY_EXCERPT_CHARS],
                    )
                )
            return

        # Per-route shape rules only apply to 2xx bodies.
        if 200 <= exchange.status < 300 and route.shape_check is not None:
            for violation in route.shape_check(exchange, parsed):
                self._add(violation)

    def _check_headers(self, exchange: CapturedExchange) -> None:
        if not is_json_api(exchange.url):
            return
        content_type = exchange.headers.get("content-type")
        if content_type and "application/json" not in content_type:
            self._add(
                Violation.for_exchange(
                    exchange,
                    ViolationKind.INVALID_CONTENT_TYPE,
                    Severity.MEDIUM,
                    f"Expected application/json, got {content_type}",
                    actual_content_type=content_type,
                )
            )

    # ---- on-demand checks ----

    def validate_authentication_headers(self) -> bool:
        unauthenticated = [
            r for r in self.requests if not r.headers.get("authorization", "").startswith("Bearer ")
        ]
        for req in unauthenticated:
            self._add(
                Violation(
                    kind=ViolationKind.MISSING_AUTHENTICATION,
                    url=req.url,
                    method=req.method,
                    issue="API request missing Bearer token authorization",
                    severity=Severity.HIGH,
                    timestamp=req.timestamp,
                )
            )
        if unauthenticated:
            logger.error("Found %d API requests without proper authentication", len(unauthenticated))
        return not unauthenticated

    def validate_uuid_parameters(self) -> bool:
        found = 0
        for req in self.requests:
            if req.method != "DELETE" or "/campaign_memberships" not in req.url:
                continue
            # Unparseable URLs are skipped, not flagged.
            try:
                query = parse_qs(urlsplit(req.url).query)
            except ValueError:
                continue
            for param in ("campaign_id", "user_id"):
                # Absent parameters are fine; only present, malformed ones count.
                value = (query.get(param) or [""])[0]
                if value and not UUID_RE.match(value):
                    found += 1
                    self._add(
                        Violation(
                            kind=ViolationKind.INVALID_UUID_FORMAT,
                            url=req.url,
                            method=req.method,
                            issue=f"Invalid {param} UUID format",
                            severity=Severity.MEDIUM,
                            timestamp=req.timestamp,
                            details={"parameter": param, "value": value},
                        )
                    )
        return found == 0

    # ---- reads ----

    def get_violations(self, severity: Optional[Union[Severity, str]] = None) -> List[Violation]:
        if severity is None:
            return list(self.violations)
        # Accept "high" as well as Severity.HIGH; an unknown level matches nothing.
        level = severity.value if isinstance(severity, Severity) else str(severity).upper()
        return [v for v in self.violations if v.severity.value == level]

    def get_summary(self) -> NetworkSummary:
        by_severity = Counter(v.severity.value for v in self.violations)
        return NetworkSummary(
            total_requests=len(self.requests),
            total_responses=len(self.responses),
            api_requests=sum(1 for r in self.requests if is_json_api(r.url)),
            violations=len(self.violations),
            violations_by_severity=dict(by_severity),
            start=min((r.timestamp for r in self.requests), default=0),
            end=max((r.timestamp for r in self.responses), default=0),
        )

    def find_response(self, pattern: Union[str, Pattern[str]], method: str, since: int = 0) -> Optional[CapturedExchange]:
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        method = method.upper()
        for exchange in self.responses:
            if exchange.method == method and exchange.timestamp >= since and regex.search(exchange.url):
                return exchange
        return None

    def generate_recommendations(self) -> List[str]:
        kinds = {v.kind for v in self.violations}
        recommendations = []
        if any(v.severity is Severity.HIGH for v in self.violations):
            recommendations.append(RECOMMENDATIONS["high"])
        for kind in (
            ViolationKind.MISSING_AUTHENTICATION,
            ViolationKind.INVALID_ERROR_FORMAT,
            ViolationKind.UNEXPECTED_STATUS_CODE,
        ):
            if kind in kinds:
                recommendations.append(RECOMMENDATIONS[kind])
        return recommendations

    def generate_report(self) -> Dict[str, Any]:
        return {
            "summary": self.get_summary(),
            "violations": {
                "high": self.get_violations(Severity.HIGH),
                "medium": self.get_violations(Severity.MEDIUM),
                "low": self.get_violations(Severity.LOW),
            },
            "recommendations": self.generate_recommendations(),
        }

    def reset(self) -> None:
        self.requests.clear()
        self.responses.clear()
        self.violations.clear()
