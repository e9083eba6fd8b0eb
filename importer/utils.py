# importer/utils.py
import math
import random
import string
import time

from slugify import slugify as make_slug
from tenacity import (
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

_ID_ALPHABET = string.ascii_lowercase + string.digits

# Norwegian letters, spelled the way the storefront spells them in URLs.
_SLUG_REPLACEMENTS = [
    ["æ", "ae"], ["Æ", "ae"],
    ["ø", "o"], ["Ø", "o"],
    ["å", "a"], ["Å", "a"],
]


def network_retry(**tenacity_kwargs):
    """
    Create a tenacity retry decorator for handling network failures.

    Returns a configured retry decorator with exponential backoff, suitable for
    wrapping coroutines that make network requests and may fail transiently.

    Args:
        **tenacity_kwargs: Optional keyword arguments
            - attempts (int): Maximum number of attempts. Defaults to 3.
            - max_wait (float): Backoff ceiling in seconds. Defaults to 5.
            - retry_on (callable): Predicate deciding whether an exception is
              retried. Defaults to retrying any Exception.

    Returns:
        Configured retry decorator

    Retry Behavior:
        - Stops after the configured number of attempts
        - Waits with exponential backoff: min=1s, max=max_wait, multiplier=1
        - The last exception is re-raised once attempts are exhausted

    Example:
        @network_retry(attempts=5, retry_on=is_transient)
        async def fetch_data(url):
            return await client.get(url)
    """
    retry_on = tenacity_kwargs.get("retry_on")
    condition = (
        retry_if_exception(retry_on)
        if retry_on is not None
        else retry_if_exception_type(Exception)
    )
    max_wait = tenacity_kwargs.get("max_wait", 5)
    return retry(
        stop=stop_after_attempt(tenacity_kwargs.get("attempts", 3)),
        wait=wait_exponential(multiplier=1, min=min(1, max_wait), max=max_wait),
        retry=condition,
        reraise=True,
    )


def round_half_up(value):
    """Round to the nearest integer, halves away from zero for positives (2.5 -> 3)."""
    return int(math.floor(value + 0.5))


def generate_id():
    """12-char lowercase base36 id: 8 random chars plus 4 time-derived chars."""
    rand = "".join(random.choices(_ID_ALPHABET, k=8))
    n = int(time.time() * 1000)
    stamp = ""
    while n:
        n, r = divmod(n, 36)
        stamp = _ID_ALPHABET[r] + stamp
    return rand + stamp[2:6]


def slugify(text):
    """
    Lowercase, ASCII-only, hyphen-separated slug.

    Args:
        text (str): e.g. "Trådløs Høyttaler 20W"

    Returns:
        str: e.g. "tradlos-hoyttaler-20w". Empty when nothing survives.
    """
    return make_slug(text, replacements=_SLUG_REPLACEMENTS)
