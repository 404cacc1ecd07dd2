from datetime import datetime, time
from enum import Enum
from zoneinfo import ZoneInfo

from intakegenie.store import Firm

CLOSED_MESSAGE = "Our office is currently closed. Please call back during business hours. Goodbye."


class Route(Enum):
    AGENT = "agent"
    FORWARD_WITH_FAILOVER = "forward_with_failover"
    FORWARD = "forward"
    CLOSED = "closed"


def _parse_time(value: str) -> time:
    hour, minute = value.split(":")[:2]
    return time(int(hour), int(minute))


def is_business_hours_open(firm: Firm, now: datetime | None = None) -> bool:
    """True when `now` falls on an open day between open_time and close_time, in the firm's timezone."""
    local = (now or datetime.now(ZoneInfo("UTC"))).astimezone(ZoneInfo(firm.timezone))
    if local.weekday() not in firm.open_days:
        return False
    return _parse_time(firm.open_time) <= local.time() < _parse_time(firm.close_time)


def route_inbound_call(firm: Firm, now: datetime | None = None) -> Route:
    is_open = is_business_hours_open(firm, now)
    if not is_open and firm.mode in ("after_hours", "both"):
        return Route.AGENT
    if is_open and firm.forward_to_number:
        if firm.mode in ("failover", "both"):
            return Route.FORWARD_WITH_FAILOVER
        return Route.FORWARD
    if is_open:
        # nowhere to forward, let the agent take it
        return Route.AGENT
    return Route.CLOSED
