"""Durable call and firm records.

All writes are narrow updates keyed by call id. Status changes go through
transition(), which only applies edges in STATUS_TRANSITIONS and does so
conditionally on the current status, and the finalize pipeline is
serialized per call with a claim lease.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timedelta, timezone

import httpx

from intakegenie.errors import InvalidTransition
from intakegenie.states import STATUS_TRANSITIONS, CallStatus, Urgency

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Firm:
    id: str
    firm_name: str = ""
    timezone: str = "America/New_York"
    notify_emails: list = field(default_factory=list)
    # after_hours | failover | both
    mode: str = "after_hours"
    # 0=Monday ... 6=Sunday
    open_days: list = field(default_factory=lambda: [0, 1, 2, 3, 4])
    open_time: str = "09:00"
    close_time: str = "17:00"
    failover_ring_seconds: int = 20
    forward_to_number: str = ""
    inbound_number: str = ""
    ai_tone: str = "professional"
    ai_knowledge_base: str = ""


@dataclass
class CallRecord:
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    firm_id: str = ""
    call_sid: str | None = None
    conversation_id: str | None = None
    from_number: str = ""
    to_number: str = ""
    started_at: datetime = field(default_factory=utcnow)
    ended_at: datetime | None = None
    status: CallStatus = CallStatus.IN_PROGRESS
    urgency: Urgency = Urgency.NORMAL
    intake: dict = field(default_factory=dict)
    transcript_text: str | None = None
    summary: dict | None = None
    call_category: str | None = None
    recording_url: str | None = None
    error_message: str | None = None
    emailed_at: datetime | None = None
    updated_at: datetime = field(default_factory=utcnow)
    claimed_by: str | None = None
    claimed_until: datetime | None = None

    def to_row(self) -> dict:
        row = asdict(self)
        row["status"] = self.status.value
        row["urgency"] = self.urgency.value
        for key, value in row.items():
            if isinstance(value, datetime):
                row[key] = value.isoformat()
        return row

    @classmethod
    def from_row(cls, row: dict) -> "CallRecord":
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in row.items() if k in known}
        for key in ("started_at", "ended_at", "emailed_at", "updated_at", "claimed_until"):
            if isinstance(data.get(key), str):
                data[key] = datetime.fromisoformat(data[key].replace("Z", "+00:00"))
        if "status" in data:
            data["status"] = CallStatus(data["status"])
        if "urgency" in data:
            data["urgency"] = Urgency(data["urgency"] or Urgency.NORMAL.value)
        data["intake"] = data.get("intake") or {}
        return cls(**data)


def _sources_for(target: CallStatus) -> set[CallStatus]:
    return {src for src, targets in STATUS_TRANSITIONS.items() if target in targets}


class CallStore(ABC):
    """Interface for call/firm persistence."""

    @abstractmethod
    async def get_firm(self, firm_id: str) -> Firm | None:
        raise NotImplementedError

    @abstractmethod
    async def find_firm_by_number(self, number: str) -> Firm | None:
        raise NotImplementedError

    @abstractmethod
    async def get(self, call_id: str) -> CallRecord | None:
        raise NotImplementedError

    @abstractmethod
    async def find(self, *, call_sid: str | None = None, conversation_id: str | None = None) -> CallRecord | None:
        raise NotImplementedError

    @abstractmethod
    async def create(self, record: CallRecord) -> CallRecord:
        raise NotImplementedError

    @abstractmethod
    async def update(self, call_id: str, **changes) -> CallRecord:
        raise NotImplementedError

    @abstractmethod
    async def transition(self, call_id: str, target: CallStatus, **changes) -> CallRecord:
        """Move to target status if the current status allows it, else InvalidTransition."""
        raise NotImplementedError

    @abstractmethod
    async def claim(self, call_id: str, owner: str, lease_seconds: float) -> bool:
        """Take the finalize lease for a call. False if someone else holds a live lease."""
        raise NotImplementedError

    @abstractmethod
    async def release(self, call_id: str, owner: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def find_stale(self, statuses, older_than: datetime) -> list[CallRecord]:
        raise NotImplementedError


class InMemoryCallStore(CallStore):
    def __init__(self, firms=None, clock=utcnow):
        self._clock = clock
        self._firms: dict[str, Firm] = {f.id: f for f in (firms or [])}
        self._calls: dict[str, CallRecord] = {}
        self._lock = asyncio.Lock()

    def add_firm(self, firm: Firm) -> None:
        self._firms[firm.id] = firm

    async def get_firm(self, firm_id: str) -> Firm | None:
        return self._firms.get(firm_id)

    async def find_firm_by_number(self, number: str) -> Firm | None:
        for firm in self._firms.values():
            if number and firm.inbound_number == number:
                return firm
        return None

    async def get(self, call_id: str) -> CallRecord | None:
        return self._calls.get(call_id)

    async def find(self, *, call_sid=None, conversation_id=None) -> CallRecord | None:
        for record in self._calls.values():
            if call_sid and record.call_sid == call_sid:
                return record
            if conversation_id and record.conversation_id == conversation_id:
                return record
        return None

    async def create(self, record: CallRecord) -> CallRecord:
        async with self._lock:
            record.updated_at = self._clock()
            self._calls[record.id] = record
        logger.info("call %s created (%s)", record.id, record.status.value)
        return record

    async def update(self, call_id: str, **changes) -> CallRecord:
        async with self._lock:
            record = self._calls[call_id]
            for key, value in changes.items():
                setattr(record, key, value)
            record.updated_at = self._clock()
            return record

    async def transition(self, call_id: str, target: CallStatus, **changes) -> CallRecord:
        async with self._lock:
            record = self._calls[call_id]
            if not record.status.can_transition_to(target):
                raise InvalidTransition(call_id, record.status, target)
            logger.info("call %s: %s -> %s", call_id, record.status.value, target.value)
            record.status = target
            for key, value in changes.items():
                setattr(record, key, value)
            record.updated_at = self._clock()
            return record

    async def claim(self, call_id: str, owner: str, lease_seconds: float) -> bool:
        async with self._lock:
            record = self._calls[call_id]
            now = self._clock()
            if record.claimed_until is not None and record.claimed_until > now and record.claimed_by != owner:
                return False
            record.claimed_by = owner
            record.claimed_until = now + timedelta(seconds=lease_seconds)
            return True

    async def release(self, call_id: str, owner: str) -> None:
        async with self._lock:
            record = self._calls.get(call_id)
            if record is not None and record.claimed_by == owner:
                record.claimed_by = None
                record.claimed_until = None

    async def find_stale(self, statuses, older_than: datetime) -> list[CallRecord]:
        wanted = set(statuses)
        return [r for r in self._calls.values() if r.status in wanted and r.updated_at < older_than]


class SupabaseCallStore(CallStore):
    """PostgREST-backed store. Conditional writes are expressed as row filters."""

    def __init__(self, base_url: str, service_key: str, timeout: float = 10.0, client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/") + "/rest/v1"
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "apikey": service_key,
                    "Authorization": f"Bearer {service_key}",
                    "Content-Type": "application/json",
                    "Prefer": "return=representation",
                },
                timeout=timeout,
            )

    async def close(self):
        await self._client.aclose()

    async def _select_one(self, table: str, params: dict) -> dict | None:
        resp = await self._client.get(f"/{table}", params={**params, "limit": "1"})
        resp.raise_for_status()
        rows = resp.json()
        return rows[0] if rows else None

    async def _patch(self, params: dict, changes: dict) -> list[dict]:
        body = {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in changes.items()}
        for key in ("status", "urgency"):
            if hasattr(body.get(key), "value"):
                body[key] = body[key].value
        resp = await self._client.patch("/calls", params=params, json=body)
        resp.raise_for_status()
        return resp.json()

    async def get_firm(self, firm_id: str) -> Firm | None:
        row = await self._select_one("firms", {"id": f"eq.{firm_id}"})
        return _firm_from_row(row) if row else None

    async def find_firm_by_number(self, number: str) -> Firm | None:
        row = await self._select_one("firms", {"inbound_number": f"eq.{number}"})
        return _firm_from_row(row) if row else None

    async def get(self, call_id: str) -> CallRecord | None:
        row = await self._select_one("calls", {"id": f"eq.{call_id}"})
        return CallRecord.from_row(row) if row else None

    async def find(self, *, call_sid=None, conversation_id=None) -> CallRecord | None:
        if call_sid:
            row = await self._select_one("calls", {"call_sid": f"eq.{call_sid}"})
        elif conversation_id:
            row = await self._select_one("calls", {"conversation_id": f"eq.{conversation_id}"})
        else:
            return None
        return CallRecord.from_row(row) if row else None

    async def create(self, record: CallRecord) -> CallRecord:
        row = record.to_row()
        resp = await self._client.post("/calls", json=row)
        resp.raise_for_status()
        return CallRecord.from_row(resp.json()[0])

    async def update(self, call_id: str, **changes) -> CallRecord:
        rows = await self._patch({"id": f"eq.{call_id}"}, {**changes, "updated_at": utcnow()})
        return CallRecord.from_row(rows[0])

    async def transition(self, call_id: str, target: CallStatus, **changes) -> CallRecord:
        sources = ",".join(sorted(s.value for s in _sources_for(target)))
        rows = await self._patch(
            {"id": f"eq.{call_id}", "status": f"in.({sources})"},
            {**changes, "status": target, "updated_at": utcnow()},
        )
        if not rows:
            current = await self.get(call_id)
            raise InvalidTransition(call_id, current.status if current else CallStatus.ERROR, target)
        logger.info("call %s -> %s", call_id, target.value)
        return CallRecord.from_row(rows[0])

    async def claim(self, call_id: str, owner: str, lease_seconds: float) -> bool:
        now = utcnow()
        rows = await self._patch(
            {
                "id": f"eq.{call_id}",
                "or": f"(claimed_until.is.null,claimed_until.lt.{now.isoformat()},claimed_by.eq.{owner})",
            },
            {"claimed_by": owner, "claimed_until": now + timedelta(seconds=lease_seconds)},
        )
        return bool(rows)

    async def release(self, call_id: str, owner: str) -> None:
        await self._patch(
            {"id": f"eq.{call_id}", "claimed_by": f"eq.{owner}"},
            {"claimed_by": None, "claimed_until": None},
        )

    async def find_stale(self, statuses, older_than: datetime) -> list[CallRecord]:
        values = ",".join(s.value for s in statuses)
        resp = await self._client.get(
            "/calls",
            params={"status": f"in.({values})", "updated_at": f"lt.{older_than.isoformat()}"},
        )
        resp.raise_for_status()
        return [CallRecord.from_row(row) for row in resp.json()]


def _firm_from_row(row: dict) -> Firm:
    known = {f.name for f in fields(Firm)}
    return Firm(**{k: v for k, v in row.items() if k in known and v is not None})
