"""Common utilities shared by deploy steps and providers."""

import logging
import secrets
import string
import threading
import time
from typing import Callable, Optional

from errors import Cancelled, DeadlineExceeded

logger = logging.getLogger(__name__)

_ALPHANUMERIC = string.ascii_letters + string.digits


def wait_until(
    condition: Callable[[], bool],
    timeout: float,
    interval: float,
    description: str,
    cancel: Optional[threading.Event] = None,
) -> None:
    """Poll condition until it returns True.

    Args:
        condition: Callable polled once per interval
        timeout: Ceiling in seconds
        interval: Pause between polls in seconds
        description: What is being waited for, used in log and error text
        cancel: Optional signal that aborts the wait

    Raises:
        DeadlineExceeded: If the ceiling is reached first
        Cancelled: If the cancel signal is set while waiting
    """
    logger.debug(f"Waiting for {description} (timeout {timeout}s)...")
    start = time.time()
    while True:
        if cancel is not None and cancel.is_set():
            raise Cancelled(f"cancelled while waiting for {description}")
        if condition():
            logger.debug(f"{description}: done after {time.time() - start:.1f}s")
            return
        if time.time() - start >= timeout:
            break
        if cancel is not None:
            # Event.wait returns early when cancel is set
            cancel.wait(interval)
        else:
            time.sleep(interval)
    raise DeadlineExceeded(f"timed out after {timeout}s waiting for {description}")


def check_cancelled(cancel: Optional[threading.Event], what: str) -> None:
    """Raise Cancelled if the signal is set."""
    if cancel is not None and cancel.is_set():
        raise Cancelled(f"cancelled before {what}")


def merge_string_maps(*maps: Optional[dict]) -> dict:
    """Merge string maps left to right; later keys win, None is skipped."""
    merged: dict = {}
    for m in maps:
        if m:
            merged.update(m)
    return merged


def random_string(length: int, alphabet: str = _ALPHANUMERIC) -> str:
    """Return a cryptographically random string."""
    return ''.join(secrets.choice(alphabet) for _ in range(length))
