from datetime import datetime, timezone

import pytest

from crashwatch.alerts.formatting import CRITICAL_PREFIX
from crashwatch.alerts.rules import RoutingRule
from crashwatch.notify.router import ChannelPlan, NotificationRouter, PendingNotification
from crashwatch.utils.types import AlertTrigger, RecoveryAlert
from tests.helpers.fakes import FakeChannel, FakeMarker

NOW = datetime(2025, 3, 14, 6, 0, tzinfo=timezone.utc)

def _trigger(threshold, symbol="TCS"):
    return AlertTrigger(symbol, "INDIA", 80.0, 100.0, 20.0, threshold, "day", reason="first_alert")

def _router(push=None, email=None, marker=None, rule=None):
    return NotificationRouter(
        push if push is not None else FakeChannel(),
        email if email is not None else FakeChannel(),
        marker if marker is not None else FakeMarker(),
        rule,
        email_to="ops@example.com",
        clock=lambda: NOW,
    )

def test_route_breakpoints():
    r = _router()
    assert r.route(_trigger(5)) == ChannelPlan(email=True)
    assert r.route(_trigger(10)) == ChannelPlan(email=True, push=True, loud=False)
    assert r.route(_trigger(15)) == ChannelPlan(email=True, push=True, loud=True)
    assert r.route(_trigger(20)) == ChannelPlan(email=True, push=True, loud=True, critical=True)

def test_route_breakpoints_are_configurable():
    r = _router(rule=RoutingRule(push_from=5, loud_from=5, critical_from=10))
    assert r.route(_trigger(10)).critical

@pytest.mark.asyncio
async def test_email_only_for_low_threshold():
    push, email, marker = FakeChannel(), FakeChannel(), FakeMarker()
    ok = await _router(push, email, marker).send_alert(_trigger(5), 7, [2, 1, 2])
    assert ok
    assert push.sent == []
    (to, subject, html, text), _ = email.sent[0]
    assert to == "ops@example.com"
    assert subject.startswith("[MEDIUM]")
    assert marker.marked == [(7, [1, 2])]

@pytest.mark.asyncio
async def test_silent_push_at_ten_loud_at_fifteen():
    push = FakeChannel()
    r = _router(push=push)
    await r.send_alert(_trigger(10), 1, [1])
    await r.send_alert(_trigger(15), 2, [1])
    assert push.sent[0][1] == {"disable_notification": True}
    assert push.sent[1][1] == {"disable_notification": False}

@pytest.mark.asyncio
async def test_critical_prefixes_message_and_subject():
    push, email = FakeChannel(), FakeChannel()
    await _router(push, email).send_alert(_trigger(20), 1, [1])
    (text,), _ = push.sent[0]
    assert text.startswith(CRITICAL_PREFIX)
    (_, subject, _, _), _ = email.sent[0]
    assert subject.startswith("[CRITICAL] [CRITICAL]")

@pytest.mark.asyncio
async def test_subject_label_agrees_with_raised_critical_breakpoint():
    push, email = FakeChannel(), FakeChannel()
    rule = RoutingRule(push_from=10, loud_from=15, critical_from=25)
    await _router(push, email, rule=rule).send_alert(_trigger(20), 1, [1])
    (text,), _ = push.sent[0]
    assert not text.startswith(CRITICAL_PREFIX)
    (_, subject, _, _), _ = email.sent[0]
    assert subject.startswith("[HIGH] ")
    assert "CRITICAL" not in subject

@pytest.mark.asyncio
async def test_any_channel_success_counts():
    marker = FakeMarker()
    ok = await _router(FakeChannel(result=False), FakeChannel(result=True), marker).send_alert(_trigger(15), 3, [9])
    assert ok and marker.marked == [(3, [9])]

@pytest.mark.asyncio
async def test_all_channels_failing_does_not_mark():
    marker = FakeMarker()
    r = _router(FakeChannel(result=RuntimeError("x")), FakeChannel(result=False), marker)
    assert not await r.send_alert(_trigger(15), 3, [9])
    assert marker.marked == []

@pytest.mark.asyncio
async def test_no_users_is_a_noop():
    push, email = FakeChannel(), FakeChannel()
    assert not await _router(push, email).send_alert(_trigger(20), 1, [])
    assert push.sent == [] and email.sent == []

@pytest.mark.asyncio
async def test_mark_failure_keeps_success():
    assert await _router(marker=FakeMarker(fail=True)).send_alert(_trigger(10), 1, [1])

@pytest.mark.asyncio
async def test_send_alerts_isolates_each_notification():
    marker = FakeMarker()
    r = _router(FakeChannel(), FakeChannel(), marker)
    res = await r.send_alerts([
        PendingNotification(_trigger(10, "A"), 1, [1]),
        PendingNotification(_trigger(10, "B"), 2, []),
        PendingNotification(_trigger(20, "C"), 3, [4, 5]),
    ])
    assert res == [True, False, True]
    assert sorted(marker.marked) == [(1, [1]), (3, [4, 5])]

@pytest.mark.asyncio
async def test_recovery_uses_both_channels_without_marking():
    push, email, marker = FakeChannel(result=False), FakeChannel(), FakeMarker()
    rec = RecoveryAlert("TCS", "INDIA", 102.0, 100.0, 2.0)
    await _router(push, email, marker).send_recoveries([rec])
    assert len(push.sent) == 1 and len(email.sent) == 1
    (_, subject, _, _), _ = email.sent[0]
    assert subject == "Recovery Alert: TCS recovered 2.00%"
    assert marker.marked == []
