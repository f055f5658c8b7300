"""
Retry and throttle policy for Shopify requests.

Wraps a single HTTP call with exponential backoff for 429/5xx responses and
transport errors, honours Retry-After hints, and reports the outcome as a
tagged result so callers decide between degrading and failing.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

import requests

from shopify_ingest.utils.logging_utils import log_progress, log_warning

Sleep = Callable[[float], None]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff settings for one kind of request.

    max_retries counts retries, not attempts: a request is sent at most
    max_retries + 1 times, with base_delay, 2 * base_delay, ... between sends.
    """

    max_retries: int = 3
    base_delay: float = 0.2


@dataclass(frozen=True)
class Success:
    """Carries the response, or whatever the caller extracted from it."""

    value: Any


@dataclass(frozen=True)
class Degraded:
    """Retry budget ran out on a retryable failure."""

    reason: str
    status_code: Optional[int] = None


@dataclass(frozen=True)
class Fatal:
    """Terminal failure: a non-retryable status."""

    error: Exception
    status_code: Optional[int] = None


FetchOutcome = Union[Success, Degraded, Fatal]


def is_retryable_status(status_code: int) -> bool:
    """429 and every 5xx are worth another attempt."""
    return status_code == 429 or status_code >= 500


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Parse a Retry-After header given in seconds.

    Returns:
        Delay in seconds, or None when the header is absent or not numeric.
    """
    if not value:
        return None
    try:
        delay = float(value.strip())
    except ValueError:
        return None
    return delay if delay >= 0 else None


def call_with_retry(
    send: Callable[[], requests.Response],
    policy: RetryPolicy,
    label: str,
    sleep: Sleep = time.sleep,
) -> FetchOutcome:
    """
    Send a request until it succeeds, hits a terminal status, or runs out of retries.

    Args:
        send: Zero-argument callable issuing the HTTP request
        policy: Backoff settings
        label: Section name used in log lines
        sleep: Injected sleep function (seconds)

    Returns:
        Success with the response, Fatal for non-retryable statuses,
        Degraded once the retry budget is exhausted.
    """
    backoff = policy.base_delay
    attempt = 0

    while True:
        try:
            response = send()
        except requests.exceptions.RequestException as e:
            if attempt >= policy.max_retries:
                log_warning(label, f"Giving up after {attempt + 1} attempt(s): {e}")
                return Degraded(reason=f"transport error: {e}")
            attempt += 1
            log_warning(
                label,
                f"Request exception {type(e).__name__}, retrying in {backoff:.2f}s "
                f"(retry {attempt}/{policy.max_retries})",
            )
            sleep(backoff)
            backoff *= 2
            continue

        if response.ok:
            return Success(response)

        status = response.status_code
        if not is_retryable_status(status):
            return Fatal(
                error=requests.exceptions.HTTPError(
                    f"{status} returned for {response.url}", response=response
                ),
                status_code=status,
            )

        if attempt >= policy.max_retries:
            log_warning(label, f"Giving up after {attempt + 1} attempt(s): HTTP {status}")
            return Degraded(reason=f"HTTP {status}", status_code=status)

        attempt += 1
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        delay = retry_after if retry_after is not None else backoff
        log_warning(
            label,
            f"Received {status}, retrying in {delay:.2f}s "
            f"(retry {attempt}/{policy.max_retries})",
        )
        sleep(delay)
        backoff *= 2


def parse_call_budget(value: Optional[str]) -> Optional[float]:
    """
    Parse Shopify's X-Shopify-Shop-Api-Call-Limit header ("used/total").

    Returns:
        Utilization ratio, or None when the header is missing or malformed.
    """
    if not value or "/" not in value:
        return None
    used, _, total = value.partition("/")
    try:
        used_calls = float(used)
        total_calls = float(total)
    except ValueError:
        return None
    if total_calls <= 0:
        return None
    return used_calls / total_calls


def throttle_if_needed(
    ratio: Optional[float],
    threshold: float,
    pause: float,
    label: str,
    sleep: Sleep = time.sleep,
) -> bool:
    """
    Pause before the next list request when the call budget is nearly spent.

    Returns:
        True when a pause was taken.
    """
    if ratio is None or ratio <= threshold:
        return False
    log_progress(label, f"Call budget at {ratio:.0%}, pausing {pause:.2f}s")
    sleep(pause)
    return True
