from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

_ID_ALPHABET = string.digits + string.ascii_lowercase


def now_ms() -> int:
    return int(time.time() * 1000)


def new_exchange_id() -> str:
    return "".join(random.choice(_ID_ALPHABET) for _ in range(9))


def normalize_headers(headers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    # Playwright already lower-cases header names, hand-built exchanges may not.
    return {k.lower(): v for k, v in (headers or {}).items()}


@dataclass(frozen=True)
class CapturedRequest:
    url: str
    method: str
    headers: Dict[str, str] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)
    id: str = field(default_factory=new_exchange_id)

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", normalize_headers(self.headers))


@dataclass(frozen=True)
class CapturedExchange:
    """
    One observed request/response pair.

    `headers` are the response headers. `body` is None when the body was not
    captured (or body validation is off).
    """
    url: str
    method: str
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None
    timestamp: int = field(default_factory=now_ms)
    id: str = field(default_factory=new_exchange_id)
    request_headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", normalize_headers(self.headers))
        object.__setattr__(self, "request_headers", normalize_headers(self.request_headers))

    def request(self) -> CapturedRequest:
        return CapturedRequest(
            url=self.url,
            method=self.method,
            headers=self.request_headers,
            timestamp=self.timestamp,
            id=self.id,
        )
