from datetime import datetime, timezone

import pytest

from intakegenie.routing import Route, is_business_hours_open, route_inbound_call

# Wednesday, 10:00 in New York (EST)
WEDNESDAY_OPEN = datetime(2026, 3, 4, 15, 0, tzinfo=timezone.utc)
# Saturday, 10:00 in New York
SATURDAY = datetime(2026, 3, 7, 15, 0, tzinfo=timezone.utc)


class TestBusinessHours:
    def test_weekday_daytime_open(self, firm):
        assert is_business_hours_open(firm, WEDNESDAY_OPEN)

    def test_weekend_closed(self, firm):
        assert not is_business_hours_open(firm, SATURDAY)

    @pytest.mark.parametrize("hour, minute, expected", [
        (13, 59, False),
        (14, 0, True),
        (21, 59, True),
        (22, 0, False),
    ])
    def test_open_inclusive_close_exclusive(self, firm, hour, minute, expected):
        now = datetime(2026, 3, 4, hour, minute, tzinfo=timezone.utc)
        assert is_business_hours_open(firm, now) == expected

    def test_uses_firm_timezone(self, firm):
        firm.timezone = "America/Los_Angeles"
        # 07:00 in Los Angeles
        assert not is_business_hours_open(firm, WEDNESDAY_OPEN)


class TestRouteInboundCall:
    def test_after_hours_goes_to_agent(self, firm):
        assert route_inbound_call(firm, SATURDAY) == Route.AGENT

    def test_after_hours_mode_forwards_when_open(self, firm):
        assert route_inbound_call(firm, WEDNESDAY_OPEN) == Route.FORWARD

    def test_failover_when_open(self, firm):
        firm.mode = "failover"
        assert route_inbound_call(firm, WEDNESDAY_OPEN) == Route.FORWARD_WITH_FAILOVER

    def test_failover_mode_closed(self, firm):
        firm.mode = "failover"
        assert route_inbound_call(firm, SATURDAY) == Route.CLOSED

    def test_both(self, firm):
        firm.mode = "both"
        assert route_inbound_call(firm, WEDNESDAY_OPEN) == Route.FORWARD_WITH_FAILOVER
        assert route_inbound_call(firm, SATURDAY) == Route.AGENT

    def test_open_without_forward_number(self, firm):
        firm.forward_to_number = ""
        assert route_inbound_call(firm, WEDNESDAY_OPEN) == Route.AGENT
