import random


def backoff_delay(
    attempts: int,
    base_delay_seconds: float = 2.0,
    max_delay_seconds: float = 3600.0,
    jitter: bool = False
) -> float:
    """
    Delay before the next attempt after `attempts` failed attempts.

    Formula:
        delay = min(base * 2^(attempts - 1), max_delay)
        if jitter:
            delay = delay + random_uniform(0, 0.1 * delay)

    attempts=1 means "we failed once, when should we try again?" and yields
    the base delay; each further failure doubles it.
    """
    if attempts < 1:
        attempts = 1

    # 2^20 * base already exceeds any sane max_delay
    safe_exponent = min(attempts - 1, 20)

    delay = base_delay_seconds * (2 ** safe_exponent)

    if delay > max_delay_seconds:
        delay = max_delay_seconds

    if jitter:
        delay += random.uniform(0, delay * 0.1)

    return delay
