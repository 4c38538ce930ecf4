from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional, Protocol

import structlog

from crashwatch.alerts.formatting import (
    format_alert_message,
    format_alert_subject,
    format_recovery_message,
    format_recovery_subject,
    mark_critical,
    to_email_html,
    to_plain_text,
)
from crashwatch.alerts.rules import RoutingRule
from crashwatch.utils.time import utc_now
from crashwatch.utils.types import AlertTrigger, RecoveryAlert

log = structlog.get_logger("router")


class PushChannel(Protocol):
    async def send(self, text: str, disable_notification: bool = False) -> bool: ...


class MailChannel(Protocol):
    async def send(self, to: Optional[str], subject: str, html: str, text: Optional[str] = None) -> bool: ...


class NotifiedMarker(Protocol):
    async def mark_notified(self, alert_id: int, user_ids: Iterable[int]) -> int: ...


@dataclass(frozen=True, slots=True)
class ChannelPlan:
    email: bool = True
    push: bool = False
    loud: bool = False          # push with sound; silent otherwise
    critical: bool = False      # message/subject get the critical prefix


@dataclass(slots=True)
class PendingNotification:
    trigger: AlertTrigger
    alert_id: int
    user_ids: list[int] = field(default_factory=list)


class NotificationRouter:
    """
    Severity -> channels, then best-effort parallel dispatch.

    An alert counts as delivered when any planned channel succeeds; only
    then are its (alert, user) links marked notified. A failed mark is
    logged, never resent.
    """

    def __init__(
        self,
        push: Optional[PushChannel],
        email: Optional[MailChannel],
        marker: Optional[NotifiedMarker] = None,
        rule: Optional[RoutingRule] = None,
        *,
        email_to: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.push = push
        self.email = email
        self.marker = marker
        self.rule = rule or RoutingRule()
        self.email_to = email_to
        self._clock = clock

    def route(self, trigger: AlertTrigger) -> ChannelPlan:
        t = trigger.threshold
        if t < self.rule.push_from:
            return ChannelPlan(email=True)
        return ChannelPlan(
            email=True,
            push=True,
            loud=t >= self.rule.loud_from,
            critical=t >= self.rule.critical_from,
        )

    async def _dispatch(self, plan: ChannelPlan, subject: str, message: str, title: str) -> list[bool]:
        sends = []
        if plan.push and self.push is not None:
            sends.append(self.push.send(message, disable_notification=not plan.loud))
        if plan.email and self.email is not None:
            sends.append(self.email.send(self.email_to, subject, to_email_html(message, title), to_plain_text(message)))
        if not sends:
            return []
        results = await asyncio.gather(*sends, return_exceptions=True)
        out = []
        for r in results:
            if isinstance(r, BaseException):
                log.warning("channel_raised", err=repr(r))
                out.append(False)
            else:
                out.append(bool(r))
        return out

    async def send_alert(self, trigger: AlertTrigger, alert_id: int, user_ids: Iterable[int]) -> bool:
        users = sorted(set(user_ids))
        if not users:
            log.debug("alert_no_users", symbol=trigger.symbol, alert_id=alert_id)
            return False

        plan = self.route(trigger)
        message = format_alert_message(trigger, self._clock(), self.rule)
        subject = format_alert_subject(trigger, self.rule)
        if plan.critical:
            message = mark_critical(message)
            subject = f"[CRITICAL] {subject}"

        results = await self._dispatch(plan, subject, message, "Market Crash Alert")
        ok = any(results)
        if not ok:
            log.warning("alert_not_delivered", symbol=trigger.symbol, market=trigger.market, alert_id=alert_id)
            return False

        if self.marker is not None:
            try:
                await self.marker.mark_notified(alert_id, users)
            except Exception as e:
                log.error("mark_notified_failed", alert_id=alert_id, users=len(users), err=repr(e))
        log.info("alert_sent", symbol=trigger.symbol, market=trigger.market, alert_id=alert_id,
                 users=len(users), push=plan.push, loud=plan.loud, critical=plan.critical)
        return True

    async def send_alerts(self, pending: Iterable[PendingNotification]) -> list[bool]:
        pending = list(pending)
        results = await asyncio.gather(
            *(self.send_alert(p.trigger, p.alert_id, p.user_ids) for p in pending),
            return_exceptions=True,
        )
        out = []
        for p, r in zip(pending, results):
            if isinstance(r, BaseException):
                log.error("send_alert_raised", symbol=p.trigger.symbol, alert_id=p.alert_id, err=repr(r))
                out.append(False)
            else:
                out.append(r)
        return out

    async def send_recovery(self, recovery: RecoveryAlert) -> None:
        message = format_recovery_message(recovery, self._clock())
        subject = format_recovery_subject(recovery)
        results = await self._dispatch(ChannelPlan(email=True, push=True, loud=True), subject, message,
                                       "Market Recovery Alert")
        log.info("recovery_sent", symbol=recovery.symbol, market=recovery.market, delivered=any(results))

    async def send_recoveries(self, recoveries: Iterable[RecoveryAlert]) -> None:
        await asyncio.gather(*(self.send_recovery(r) for r in recoveries))

