"""
Shared fixtures: a controllable clock, an in-memory engine and seeded users.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Sequence

import pytest
import pytest_asyncio

from gavel.clients import Write
from gavel.clients.memory import MemoryStore
from gavel.conf import EngineConf
from gavel.engine import build_engine
from gavel.events import AuctionEvent
from gavel.exceptions import ConflictError
from gavel.models.entities import User, UserData
from gavel.models.operations import auction_create

T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

USERS = (
    ("seller", "user"),
    ("buyer_a", "user"),
    ("buyer_b", "user"),
    ("buyer_c", "user"),
    ("admin", "admin"),
)


class FakeClock:
    """Clock that only moves when told to"""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingHandler:
    """Event handler that keeps everything it receives"""

    def __init__(self):
        self.events: List[AuctionEvent] = []

    def __call__(self, event: AuctionEvent) -> None:
        self.events.append(event)

    def of_kind(self, event_type: type) -> List[AuctionEvent]:
        return [e for e in self.events if isinstance(e, event_type)]


class FlakyStore(MemoryStore):
    """MemoryStore whose next ``conflicts`` commits fail with ConflictError"""

    def __init__(self, conflicts: int = 0, latency: float = 0.0):
        super().__init__(latency=latency)
        self.conflicts = conflicts
        self.commit_attempts = 0

    async def commit(self, writes: Sequence[Write]):
        self.commit_attempts += 1
        if self.conflicts > 0:
            self.conflicts -= 1
            raise ConflictError("Injected conflict")
        return await super().commit(writes)


async def seed_users(store) -> None:
    for user_id, role in USERS:
        await store.insert(
            User.new(UserData(email=f"{user_id}@example.com", username=user_id, role=role), key=user_id)
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def engine_conf():
    return EngineConf()


@pytest.fixture
def engine(store, engine_conf, clock):
    return build_engine(store=store, conf=engine_conf, clock=clock)


@pytest.fixture
def events(engine):
    handler = RecordingHandler()
    engine.emitter.subscribe(handler)
    return handler


@pytest_asyncio.fixture
async def users(store):
    await seed_users(store)
    return [user_id for user_id, _ in USERS]


@pytest.fixture
def new_auction(engine, clock):
    """Factory creating an auction relative to the fake clock.

    By default the auction started a minute ago, ends in five minutes and
    is already active.
    """

    async def factory(
        seller_id: str = "seller",
        starting_price: str = "100",
        starts_in: timedelta = timedelta(minutes=-1),
        ends_in: timedelta = timedelta(minutes=5),
        bid_increment: str = "0",
        activate: bool = True,
    ):
        auction = await auction_create(
            engine.store,
            seller_id=seller_id,
            starting_price=starting_price,
            start_date=clock() + starts_in,
            end_date=clock() + ends_in,
            title="Vintage camera",
            bid_increment=bid_increment,
        )
        if activate and auction.data.start_date <= clock():
            auction = await engine.machine.activate(auction.id)
        return auction

    return factory
