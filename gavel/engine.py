from dataclasses import dataclass
from typing import Optional

from gavel import conf as gavel_conf
from gavel.clients import VersionedStore, utcnow
from gavel.clients.memory import MemoryStore
from gavel.conf import EngineConf
from gavel.events import EventEmitter
from gavel.models.operations import (
    AuctionStateMachine,
    BidLedger,
    SettlementTracker,
    UserCascadePolicy,
)
from gavel.models.operations.base import Clock
from gavel.sweeper import ClosingSweeper
from gavel.utils import log

logger = log.get_logger(__name__)


@dataclass
class Engine:
    conf: EngineConf
    store: VersionedStore
    emitter: EventEmitter
    machine: AuctionStateMachine
    ledger: BidLedger
    settlement: SettlementTracker
    sweeper: ClosingSweeper
    cascade: UserCascadePolicy


def create_store(conf: EngineConf) -> VersionedStore:
    if conf.store_backend == "couchbase":
        from gavel.clients.couchbase import CouchbaseStore

        logger.info("Using Couchbase store")
        return CouchbaseStore()
    logger.info("Using in-memory store")
    return MemoryStore()


def build_engine(
    store: Optional[VersionedStore] = None,
    conf: Optional[EngineConf] = None,
    clock: Clock = utcnow,
    emitter: Optional[EventEmitter] = None,
) -> Engine:
    """Wire every engine component against one store, emitter and clock."""
    conf = conf or gavel_conf.get_engine_conf()
    store = store or create_store(conf)
    emitter = emitter or EventEmitter()

    machine = AuctionStateMachine(store, emitter, conf, clock)
    ledger = BidLedger(store, machine, emitter, conf, clock)
    return Engine(
        conf=conf,
        store=store,
        emitter=emitter,
        machine=machine,
        ledger=ledger,
        settlement=SettlementTracker(store, machine, emitter, conf, clock),
        sweeper=ClosingSweeper(store, machine, emitter, conf, clock),
        cascade=UserCascadePolicy(store, machine, ledger),
    )
