from __future__ import annotations

import logging
import re
from typing import Optional, Pattern, Union

from netcheck.exchanges import CapturedExchange, CapturedRequest, now_ms
from netcheck.validator import ContractValidator, ValidatorConfig, is_json_api

logger = logging.getLogger(__name__)

POLL_INTERVAL_MS = 100


class ApiCallTimeout(TimeoutError):
    pass


class NetworkMonitor:
    """
    Binds a `ContractValidator` to a Playwright `Page`.

    Listens to the page's `request` / `response` events and turns API traffic
    for `config.base_url` into captured exchanges. Everything else is ignored.
    """

    def __init__(self, page, validator: Optional[ContractValidator] = None, config: Optional[ValidatorConfig] = None):
        self.page = page
        self.config = config or (validator.config if validator else ValidatorConfig())
        self.validator = validator or ContractValidator(config=self.config)
        self._attached = False
        self.attach()

    def attach(self) -> None:
        if self._attached:
            return
        self.page.on("request", self._on_request)
        self.page.on("response", self._on_response)
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return
        self.page.remove_listener("request", self._on_request)
        self.page.remove_listener("response", self._on_response)
        self._attached = False

    def is_api_request(self, url: str) -> bool:
        return is_json_api(url) and url.startswith(self.config.base_url)

    def _on_request(self, request) -> None:
        # Static assets and third-party origins are not part of the contract.
        if not self.is_api_request(request.url):
            return
        self.validator.record_request(
            CapturedRequest(url=request.url, method=request.method, headers=request.headers)
        )

    def _on_response(self, response) -> None:
        if not self.is_api_request(response.url):
            return

        body = None
        if self.config.validate_response_bodies:
            try:
                body = response.text()
            except Exception as e:
                # Redirects and aborted requests have no readable body.
                logger.warning("Could not capture response body for %s: %s", response.url, e)

        # Method and auth headers live on the request that produced this response.
        request = response.request
        self.validator.record_response(
            CapturedExchange(
                url=response.url,
                method=request.method,
                status=response.status,
                headers=response.headers,
                body=body,
                request_headers=request.headers,
            )
        )

    def wait_for_api_call(
        self,
        pattern: Union[str, Pattern[str]],
        method: str,
        timeout_ms: int = 10_000,
    ) -> CapturedExchange:
        """
        Wait until a response matching `pattern` and `method` is recorded.

        Only responses seen after this call started count. Polls with
        `page.wait_for_timeout` so Playwright keeps dispatching events.
        """
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        start = now_ms()
        # Poll the response log; Playwright only dispatches events while we wait on the page.
        while True:
            found = self.validator.find_response(regex, method, since=start)
            if found is not None:
                return found
            if now_ms() - start > timeout_ms:
                raise ApiCallTimeout(f"API call not found within {timeout_ms}ms: {method.upper()} {regex.pattern}")
            self.page.wait_for_timeout(POLL_INTERVAL_MS)
