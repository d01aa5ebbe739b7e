"""
Test Fixtures

Explicit payloads, fixed timestamps and scripted gateways.
All fixtures are explicit - no random generation.
"""

from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional
import asyncio

from simtelemetry.contracts.base import PersistenceError
from simtelemetry.contracts.events import EventKind, NormalizedEvent, RawSubmission
from simtelemetry.engine import Ingestor, IngestorConfig
from simtelemetry.storage.gateway import InMemoryGateway
from simtelemetry.temporal.clock import ManualClock


# =============================================================================
# FIXED TIMESTAMPS (deterministic)
# =============================================================================

T0 = datetime(2026, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(seconds=1)
T2 = T0 + timedelta(seconds=2)


# =============================================================================
# PAYLOADS
# =============================================================================

SPEEDING_PIPE = "Speeding|75.5|Highway Test|1"
SPEEDING_JSON = '{"type": "Speeding", "speed": 75.5, "location": "Highway Test", "violationNumber": 1}'
VEHICLE_COLLISION_JSON = '{"type":"Vehicle","objectHit":"Car_A","impactForce":60}'


def violation_payload(index: int, violation_type: str = "Speeding", speed: float = 70.0) -> str:
    """Distinct violation per index (different location, so never a duplicate)."""
    return f"{violation_type}|{speed}|Street {index}|{index}"


def collision_payload(index: int, force: float = 30.0) -> str:
    return f"Vehicle|Car_{index}|{force}|{index}"


# =============================================================================
# CONTRACT BUILDERS
# =============================================================================

def make_raw(
    payload: Any,
    kind: Any = EventKind.VIOLATION,
    session_id: Optional[str] = "s1",
    user_id: Optional[str] = "u1",
    at: datetime = T0
) -> RawSubmission:
    return RawSubmission(
        payload=payload,
        kind=kind,
        received_at=at,
        session_id=session_id,
        user_id=user_id
    )


def make_event(
    kind: EventKind,
    fields: Mapping[str, Any],
    session_id: str = "s1",
    user_id: str = "u1",
    at: datetime = T0,
    sequence_number: int = 0
) -> NormalizedEvent:
    return NormalizedEvent.create(
        kind=kind,
        session_id=session_id,
        user_id=user_id,
        occurred_at=at,
        fields=fields,
        sequence_number=sequence_number
    )


def violation_event(
    violation_type: str = "Speeding",
    speed: float = 70.0,
    location: str = "Highway Test",
    **kwargs
) -> NormalizedEvent:
    return make_event(
        EventKind.VIOLATION,
        {"type": violation_type, "speed": speed, "location": location, "violationNumber": 1},
        **kwargs
    )


def collision_event(
    impact_force: float = 30.0,
    object_hit: str = "Car_A",
    **kwargs
) -> NormalizedEvent:
    return make_event(
        EventKind.COLLISION,
        {"type": "Vehicle", "objectHit": object_hit, "impactForce": impact_force, "collisionNumber": 1},
        **kwargs
    )


def control_event(action: str, **kwargs) -> NormalizedEvent:
    return make_event(EventKind.SESSION_CONTROL, {"action": action}, **kwargs)


# =============================================================================
# SCRIPTED GATEWAYS
# =============================================================================

class FlakyGateway(InMemoryGateway):
    """
    In-memory gateway that fails on command.

    `fail_when(collection, record)` decides whether a save attempt fails;
    by default the first `failures` attempts fail.
    """

    def __init__(
        self,
        failures: int = 0,
        fail_when: Optional[Callable[[str, Mapping[str, Any]], bool]] = None
    ):
        super().__init__()
        self._remaining = failures
        self._fail_when = fail_when
        self.attempts: List[Dict[str, Any]] = []

    async def save(self, collection: str, record: Mapping[str, Any]) -> str:
        self.attempts.append({"collection": collection, "record": dict(record)})
        if self._fail_when is not None:
            if self._fail_when(collection, record):
                raise PersistenceError("scripted failure", collection)
        elif self._remaining > 0:
            self._remaining -= 1
            raise PersistenceError("scripted failure", collection)
        return await super().save(collection, record)


class DownGateway(InMemoryGateway):
    """Gateway whose backend never answers successfully."""

    def __init__(self):
        super().__init__()
        self.attempts = 0

    async def save(self, collection: str, record: Mapping[str, Any]) -> str:
        self.attempts += 1
        raise PersistenceError("backend unreachable", collection)


class SlowGateway(InMemoryGateway):
    """Gateway that takes `delay` seconds per save."""

    def __init__(self, delay: float):
        super().__init__()
        self._delay = delay

    async def save(self, collection: str, record: Mapping[str, Any]) -> str:
        await asyncio.sleep(self._delay)
        return await super().save(collection, record)


# =============================================================================
# INGESTOR
# =============================================================================

def build_ingestor(
    gateway: Optional[InMemoryGateway] = None,
    config: Optional[IngestorConfig] = None,
    start: datetime = T0
):
    """Ingestor on a manual clock. Returns (ingestor, gateway, clock)."""
    gateway = gateway if gateway is not None else InMemoryGateway()
    clock = ManualClock(start)
    ingestor = Ingestor.create(gateway, config, clock)
    return ingestor, gateway, clock


def run(coro):
    """Drive a coroutine to completion from a plain test function."""
    return asyncio.run(coro)
