# src/crashwatch/alerts/rules.py
from __future__ import annotations
from dataclasses import dataclass

@dataclass(frozen=True, slots=True)
class CrashRule:
    """
    Fire when the price has dropped >= threshold percent below a historical close.
    - thresholds              ascending drop levels in percent, all crossed ones fire
    - further_drop_percent    same-day re-alert needs this much more drop below the last alert price
    - recovery_bounce_percent rebound above the last alert price that counts as recovered
    - critical_threshold      thresholds at or above this are recorded as critical
    """
    thresholds: tuple[float, ...] = (5.0, 10.0, 15.0, 20.0)
    further_drop_percent: float = 5.0
    recovery_bounce_percent: float = 2.0
    critical_threshold: float = 20.0

    def __post_init__(self):
        # callers may hand in any iterable order; detection relies on ascending
        object.__setattr__(self, "thresholds", tuple(sorted(self.thresholds)))


@dataclass(frozen=True, slots=True)
class RoutingRule:
    """
    Severity breakpoints for notification channels.
      threshold <  push_from      -> email only
      push_from <= t < loud_from  -> push (silent) + email
      loud_from <= t              -> push with sound + email
      critical_from <= t          -> as above, content marked critical
    """
    push_from: float = 10.0
    loud_from: float = 15.0
    critical_from: float = 20.0


def drop_percentage(current: float, historical: float) -> float:
    """Drop below `historical` in percent; price increases clamp to 0."""
    if historical <= 0:
        return 0.0
    return max(0.0, (historical - current) / historical * 100.0)


def recovery_percentage(current: float, last_alert_price: float) -> float:
    if last_alert_price <= 0:
        return 0.0
    return (current - last_alert_price) / last_alert_price * 100.0


def crossed_thresholds(drop: float, thresholds: tuple[float, ...]) -> list[float]:
    return [t for t in thresholds if drop >= t]


def is_critical(threshold: float, critical_threshold: float = 20.0) -> bool:
    return threshold >= critical_threshold
