"""Exponential backoff for batch upload retries."""


def backoff_delay(retry: int, base: float) -> float:
    """Delay before retry number `retry` (1-based): base * 2^(retry-1)."""
    if retry < 1:
        raise ValueError(f"retry must be >= 1, got {retry}")
    return base * (2 ** (retry - 1))


def retry_delays(max_attempts: int, base: float) -> list[float]:
    """All delays for a budget of `max_attempts` total attempts."""
    return [backoff_delay(k, base) for k in range(1, max_attempts)]
