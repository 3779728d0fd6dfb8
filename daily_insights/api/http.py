from __future__ import annotations

from typing import Any

import requests
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential_jitter


def should_retry(exc: BaseException) -> bool:
    if isinstance(exc, requests.HTTPError):
        if exc.response is None:
            return True
        status = exc.response.status_code
        return status >= 500 or status == 429
    return isinstance(exc, (requests.Timeout, requests.ConnectionError))


def build_retrying(retry_max: int) -> Retrying:
    return Retrying(
        stop=stop_after_attempt(max(retry_max, 0) + 1),
        wait=wait_exponential_jitter(initial=1, max=10),
        retry=retry_if_exception(should_retry),
        reraise=True,
    )


def status_of(exc: requests.RequestException) -> str:
    response = getattr(exc, "response", None)
    if response is None:
        return type(exc).__name__
    return str(response.status_code)


def get_json(
    session: requests.Session,
    url: str,
    params: dict[str, Any] | None,
    timeout: tuple[int, int],
) -> Any:
    response = session.get(url, params=params, timeout=timeout)
    response.raise_for_status()
    return response.json()
