from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Pattern, Tuple, Union

from netcheck.exchanges import CapturedExchange, now_ms

# Body excerpts stored on violations are cut to this many characters.
BODY_EXCERPT_CHARS = 200


class Severity(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return {"HIGH": 3, "MEDIUM": 2, "LOW": 1}[self.value]


class ViolationKind(str, Enum):
    UNEXPECTED_STATUS_CODE = "UNEXPECTED_STATUS_CODE"
    INVALID_ERROR_FORMAT = "INVALID_ERROR_FORMAT"
    INVALID_JSON_RESPONSE = "INVALID_JSON_RESPONSE"
    MISSING_REQUIRED_FIELDS = "MISSING_REQUIRED_FIELDS"
    UNEXPECTED_RESPONSE_BODY = "UNEXPECTED_RESPONSE_BODY"
    INVALID_CONTENT_TYPE = "INVALID_CONTENT_TYPE"
    MISSING_AUTHENTICATION = "MISSING_AUTHENTICATION"
    INVALID_UUID_FORMAT = "INVALID_UUID_FORMAT"


@dataclass(frozen=True)
class Violation:
    kind: ViolationKind
    url: str
    method: str
    issue: str
    severity: Severity
    status: Optional[int] = None
    timestamp: int = field(default_factory=now_ms)
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_exchange(
        cls,
        exchange: CapturedExchange,
        kind: ViolationKind,
        severity: Severity,
        issue: str,
        **details: Any,
    ) -> "Violation":
        return cls(
            kind=kind,
            url=exchange.url,
            method=exchange.method,
            status=exchange.status,
            issue=issue,
            severity=severity,
            details=details,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.kind.value,
            "url": self.url,
            "method": self.method,
            "status": self.status,
            "issue": self.issue,
            "severity": self.severity.value,
            "timestamp": self.timestamp,
        }
        data.update(self.details)
        return data


# (exchange, parsed JSON body) -> violations
ShapeCheck = Callable[[CapturedExchange, Any], List[Violation]]


class RouteConfigError(ValueError):
    pass


@dataclass(frozen=True)
class RoutePattern:
    name: str
    url_pattern: Pattern[str]
    method: str
    expected_success_status: int
    expected_error_statuses: FrozenSet[int] = frozenset()
    shape_check: Optional[ShapeCheck] = None

    def matches(self, url: str, method: str) -> bool:
        return self.method == method.upper() and self.url_pattern.search(url) is not None

    def accepts_status(self, status: int) -> bool:
        return status == self.expected_success_status or status in self.expected_error_statuses


def require_fields(*names: str) -> ShapeCheck:
    """Success bodies must be JSON objects carrying every one of `names`."""

    def check(exchange: CapturedExchange, body: Any) -> List[Violation]:
        present = list(body.keys()) if isinstance(body, dict) else []
        missing = [n for n in names if n not in present]
        if not missing:
            return []
        return [
            Violation.for_exchange(
                exchange,
                ViolationKind.MISSING_REQUIRED_FIELDS,
                Severity.HIGH,
                f"Missing required fields in response: {', '.join(missing)}",
                required_fields=list(names),
                actual_fields=present,
            )
        ]

    return check


def expect_empty_body(exchange: CapturedExchange, body: Any) -> List[Violation]:
    if isinstance(body, (dict, list)) and len(body) == 0:
        return []
    return [
        Violation.for_exchange(
            exchange,
            ViolationKind.UNEXPECTED_RESPONSE_BODY,
            Severity.LOW,
            f"{exchange.method} response should be empty",
            actual_body=json.dumps(body)[:BODY_EXCERPT_CHARS],
        )
    ]


SHAPE_CHECKS: Dict[str, ShapeCheck] = {
    "campaign_fields": require_fields("id", "name"),
    "empty_body": expect_empty_body,
}

_UUID = r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
_MEMBERSHIP_ERRORS = frozenset({400, 401, 403, 404, 422, 500})

# Ordered; the first matching route wins.
DEFAULT_ROUTES: Tuple[RoutePattern, ...] = (
    RoutePattern(
        name="campaign_membership_delete",
        url_pattern=re.compile(r"/api/v2/campaign_memberships\?campaign_id=.+&user_id=.+"),
        method="DELETE",
        expected_success_status=200,
        expected_error_statuses=_MEMBERSHIP_ERRORS,
        shape_check=SHAPE_CHECKS["empty_body"],
    ),
    RoutePattern(
        name="campaign_membership_delete_by_id",
        url_pattern=re.compile(rf"/api/v2/campaign_memberships/{_UUID}(?:[?#]|$)"),
        method="DELETE",
        expected_success_status=200,
        expected_error_statuses=_MEMBERSHIP_ERRORS,
        shape_check=SHAPE_CHECKS["empty_body"],
    ),
    RoutePattern(
        name="campaign_membership_create",
        url_pattern=re.compile(r"/api/v2/campaign_memberships"),
        method="POST",
        expected_success_status=201,
        expected_error_statuses=_MEMBERSHIP_ERRORS,
        shape_check=SHAPE_CHECKS["campaign_fields"],
    ),
    RoutePattern(
        name="users_current",
        url_pattern=re.compile(r"/api/v2/users/current"),
        method="GET",
        expected_success_status=200,
        expected_error_statuses=frozenset({401, 500}),
    ),
    RoutePattern(
        name="campaigns_list",
        url_pattern=re.compile(r"/api/v2/campaigns"),
        method="GET",
        expected_success_status=200,
        expected_error_statuses=frozenset({401, 500}),
    ),
)


def find_route(routes: Iterable[RoutePattern], url: str, method: str) -> Optional[RoutePattern]:
    for route in routes:
        if route.matches(url, method):
            return route
    return None


def _route_from_dict(raw: Dict[str, Any], idx: int) -> RoutePattern:
    try:
        name = raw["name"]
        url = raw["url"]
        method = raw["method"]
        success = int(raw["expected_success_status"])
    except (KeyError, TypeError, ValueError) as e:
        raise RouteConfigError(f"Route #{idx} is missing or has an invalid field: {e}") from e

    try:
        pattern = re.compile(url)
    except re.error as e:
        raise RouteConfigError(f'Route "{name}" has an invalid url pattern: {e}') from e

    shape_name = raw.get("shape_check")
    shape = None
    if shape_name is not None:
        shape = SHAPE_CHECKS.get(shape_name)
        if shape is None:
            known = ", ".join(sorted(SHAPE_CHECKS))
            raise RouteConfigError(f'Route "{name}" uses unknown shape_check "{shape_name}" (known: {known})')

    try:
        errors = frozenset(int(s) for s in raw.get("expected_error_statuses", []))
    except (TypeError, ValueError) as e:
        raise RouteConfigError(f'Route "{name}" has invalid expected_error_statuses: {e}') from e

    return RoutePattern(
        name=name,
        url_pattern=pattern,
        method=str(method).upper(),
        expected_success_status=success,
        expected_error_statuses=errors,
        shape_check=shape,
    )


def load_route_patterns(path: Union[str, Path]) -> Tuple[RoutePattern, ...]:
    """
    Load a route table from a JSON file.

    Format:
        {"routes": [{"name": ..., "url": <regex>, "method": "GET",
                     "expected_success_status": 200,
                     "expected_error_statuses": [401, 500],
                     "shape_check": "empty_body"}]}

    Order is preserved; the first matching route wins at validation time.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise RouteConfigError(f"Could not read route file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise RouteConfigError(f"Route file {path} is not valid JSON: {e}") from e

    raw_routes = data.get("routes") if isinstance(data, dict) else None
    if not isinstance(raw_routes, list):
        raise RouteConfigError(f'Route file {path} must contain a "routes" list')

    return tuple(_route_from_dict(raw, i) for i, raw in enumerate(raw_routes, start=1))
