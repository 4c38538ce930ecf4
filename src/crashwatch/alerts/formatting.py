from __future__ import annotations
import html
import re
from datetime import datetime
from typing import Optional

from crashwatch.alerts.rules import RoutingRule
from crashwatch.utils.time import market_now
from crashwatch.utils.types import AlertTrigger, RecoveryAlert

TIMEFRAME_LABELS = {
    "day": "Previous Day",
    "week": "1 Week Ago",
    "month": "1 Month Ago",
    "year": "1 Year Ago",
}
MARKET_LABELS = {"INDIA": "India (NSE)", "USA": "USA (NYSE/NASDAQ)"}
MARKET_SHORT = {"INDIA": "India", "USA": "USA"}
CURRENCY = {"INDIA": "₹", "USA": "$"}

CRITICAL_PREFIX = "🚨 CRITICAL ALERT 🚨"

def _fmt_ts(market: str, now: Optional[datetime]) -> str:
    return market_now(market, now).strftime("%d %b %Y, %-I:%M:%S %p %Z")  # e.g. 14 Mar 2025, 2:05:10 PM IST

def _money(market: str, v: float) -> str:
    return f"{CURRENCY.get(market, '')}{v:,.2f}"

def severity(threshold: float, rule: Optional[RoutingRule] = None) -> str:
    rule = rule or RoutingRule()
    if threshold >= rule.critical_from:
        return "CRITICAL"
    if threshold >= rule.loud_from:
        return "HIGH"
    return "MEDIUM"

def format_alert_message(
    t: AlertTrigger,
    now: Optional[datetime] = None,
    rule: Optional[RoutingRule] = None,
) -> str:
    emoji = {"CRITICAL": "🚨", "HIGH": "⚠️"}.get(severity(t.threshold, rule), "📉")
    sym = html.escape(t.symbol)
    return (
        f"{emoji} <b>Market Crash Alert</b>\n\n"
        f"Market: <b>{MARKET_LABELS.get(t.market, t.market)}</b>\n"
        f"Symbol: <b>{sym}</b>\n"
        f"Drop: <b>{t.drop_percentage:.2f}%</b> (Threshold: {t.threshold:g}%)\n"
        f"Timeframe: {TIMEFRAME_LABELS.get(t.timeframe, t.timeframe)}\n\n"
        f"Current Price: {_money(t.market, t.current_price)}\n"
        f"Historical Price: {_money(t.market, t.historical_price)}\n\n"
        f"Time: {_fmt_ts(t.market, now)}"
    )

def format_alert_subject(t: AlertTrigger, rule: Optional[RoutingRule] = None) -> str:
    return (
        f"[{severity(t.threshold, rule)}] {MARKET_SHORT.get(t.market, t.market)} Market Crash Alert: "
        f"{t.symbol} down {t.drop_percentage:.2f}%"
    )

def mark_critical(message: str) -> str:
    return f"{CRITICAL_PREFIX}\n\n{message}"

def format_recovery_message(r: RecoveryAlert, now: Optional[datetime] = None) -> str:
    gain = r.current_price - r.last_alert_price
    return (
        f"📈 <b>Market Recovery Alert</b>\n\n"
        f"Market: <b>{MARKET_LABELS.get(r.market, r.market)}</b>\n"
        f"Symbol: <b>{html.escape(r.symbol)}</b>\n"
        f"Recovery: <b>+{r.recovery_percentage:.2f}%</b> from last alert\n\n"
        f"Last Alert Price: {_money(r.market, r.last_alert_price)}\n"
        f"Current Price: {_money(r.market, r.current_price)}\n"
        f"Gain: {_money(r.market, gain)}\n\n"
        f"Alert tracking cleared.\n\n"
        f"Time: {_fmt_ts(r.market, now)}"
    )

def format_recovery_subject(r: RecoveryAlert) -> str:
    return f"Recovery Alert: {r.symbol} recovered {r.recovery_percentage:.2f}%"

_TAG_RE = re.compile(r"<[^>]+>")

def to_plain_text(message: str) -> str:
    """Telegram-flavoured HTML -> plain text for the email text/plain part."""
    return html.unescape(_TAG_RE.sub("", message))

def to_email_html(message: str, title: str = "Market Crash Alert") -> str:
    body = message.replace("\n", "<br>")
    return (
        "<html><body style=\"font-family: Arial, sans-serif; padding: 20px;\">"
        f"<h2 style=\"color: #d32f2f;\">{html.escape(title)}</h2>"
        f"<div style=\"background-color: #f5f5f5; padding: 15px; border-radius: 5px;\">{body}</div>"
        "<p style=\"color: #666; font-size: 12px; margin-top: 20px;\">"
        "This is an automated alert from crashwatch.</p>"
        "</body></html>"
    )
