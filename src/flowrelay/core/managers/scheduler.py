from typing import Optional

from flowrelay.core.config import PollingConfig

DEFAULT_POLLING_CONFIG = PollingConfig()


def poll_interval(attempt: int, had_error: bool, config: Optional[PollingConfig] = None) -> float:
    """Seconds to wait before the next poll.

    After an error the fixed error interval applies. Otherwise a step function
    of the attempt count: short waits for fast jobs, up to `max_interval` for
    jobs running tens of minutes. Never returns zero (no abandoning, no spinning).
    """
    config = config or DEFAULT_POLLING_CONFIG
    if had_error:
        return config.error_interval
    for upper_bound, seconds in config.interval_tiers:
        if attempt < upper_bound:
            return seconds
    return config.max_interval
