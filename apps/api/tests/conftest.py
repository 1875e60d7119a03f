"""Pytest configuration and fixtures."""

import hashlib
import itertools
import os
import time
from datetime import timedelta
from types import SimpleNamespace

import pytest
from minio.error import S3Error
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from festos_api.db.base import Base
from festos_api.ledger.client import LedgerTransportError
from festos_api.ledger.provider import LedgerProvider
from festos_api.monitoring.health import HealthMonitor
from festos_api.monitoring.state import InMemoryHealthStateStore
from festos_api.services.container import Services
from festos_api.services.orchestrator import EventOrchestrator
from festos_api.storage.content import ContentStoreProvider
from festos_api.storage.database import DatabaseProvider
from festos_api.utils.clock import utcnow
from festos_api.utils.units import parse_price, to_wei

# Use test database URL from environment or default to SQLite in-memory
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")

CONTRACT_ADDRESS = "0x" + "c0" * 20
CREATOR = "0x" + "ab" * 20
EVENT_CREATED_TOPIC = "0x" + "e1" * 32


def tx_hash(n: int) -> str:
    return "0x" + format(n, "064x")


class MissingObjectError(S3Error):
    """S3Error for an absent object, independent of the minio constructor signature."""

    def __init__(self, object_name: str):
        Exception.__init__(self, f"NoSuchKey: {object_name}")
        self.object_name = object_name

    @property
    def code(self):
        return "NoSuchKey"

    def __str__(self):
        return f"NoSuchKey: {self.object_name}"


class FakeResponse:
    def __init__(self, data: bytes):
        self.data = data

    def read(self):
        return self.data

    def close(self):
        pass

    def release_conn(self):
        pass


class FakeMinio:
    """In-memory stand-in for the MinIO client."""

    def __init__(self):
        self.buckets = set()
        self.objects = {}
        self.put_calls = 0
        self.fail_puts = 0

    def bucket_exists(self, bucket):
        return bucket in self.buckets

    def make_bucket(self, bucket):
        self.buckets.add(bucket)

    def stat_object(self, bucket, key):
        if (bucket, key) not in self.objects:
            raise MissingObjectError(key)
        return SimpleNamespace(size=len(self.objects[(bucket, key)]))

    def put_object(self, bucket, key, data, length, content_type="application/octet-stream"):
        self.put_calls += 1
        if self.fail_puts:
            self.fail_puts -= 1
            raise ConnectionError("minio unavailable")
        self.objects[(bucket, key)] = data.read(length)

    def get_object(self, bucket, key):
        if (bucket, key) not in self.objects:
            raise MissingObjectError(key)
        return FakeResponse(self.objects[(bucket, key)])


class UnreachableRedis:
    """Redis client whose every call fails with a connection error."""

    def _fail(self, *args, **kwargs):
        raise RedisConnectionError("redis unreachable")

    get = set = lock = _fail


class FakeLedgerClient:
    """In-memory stand-in for the JSON-RPC node and event indexer."""

    def __init__(self):
        self.rpc_url = "http://ledger.test/rpc"
        self.indexer_url = "http://ledger.test/indexer"
        self.receipts = {}
        self.events = {}
        self.broadcast = []
        self.latest_block = 100
        self.unreachable = False
        self.calls = []
        self._ids = itertools.count(1)

    def _call(self, name):
        self.calls.append(name)
        if self.unreachable:
            raise LedgerTransportError("connection refused")

    def block_number(self):
        self._call("block_number")
        return self.latest_block

    def get_transaction_receipt(self, tx):
        self._call("get_transaction_receipt")
        return self.receipts.get(tx)

    def send_raw_transaction(self, raw):
        self._call("send_raw_transaction")
        self.broadcast.append(raw)
        return "0x" + hashlib.sha256(raw.encode()).hexdigest()

    def list_events(self, offset=0, limit=100, creator=None):
        self._call("list_events")
        events = [self.events[k] for k in sorted(self.events)]
        if creator:
            events = [e for e in events if e["creator"].lower() == creator.lower()]
        return {"events": events[offset : offset + limit], "total": len(events)}

    def get_event(self, ledger_event_id):
        self._call("get_event")
        return self.events.get(int(ledger_event_id))

    def add_event(self, **fields) -> dict:
        """Index an on-chain event directly."""
        event_id = next(self._ids)
        start = int(time.time()) + 10 * 86400
        raw = {
            "eventId": event_id,
            "creator": CREATOR,
            "title": f"On-chain event {event_id}",
            "description": "",
            "location": "",
            "startTime": start,
            "endTime": start + 3600,
            "maxCapacity": 100,
            "currentAttendees": 0,
            "ticketPrice": str(to_wei(parse_price(fields.pop("price", 0)))),
            "isActive": True,
            "requireApproval": False,
            "hasPOAP": False,
            "metadataUri": "",
            "transactionHash": tx_hash(10_000 + event_id),
        }
        raw.update(fields)
        self.events[event_id] = raw
        return raw

    def mine(self, tx, operation, creator=CREATOR, indexed=True, to=CONTRACT_ADDRESS) -> int:
        """Finalize a createEvent transaction built from an unsigned operation."""
        args = operation["args"]
        event_id = next(self._ids)
        if indexed:
            self.events[event_id] = {
                "eventId": event_id,
                "creator": creator,
                "title": args[0],
                "description": args[1],
                "location": args[2],
                "startTime": int(args[3]),
                "endTime": int(args[4]),
                "maxCapacity": int(args[5]),
                "ticketPrice": args[6],
                "isActive": True,
                "requireApproval": args[7],
                "hasPOAP": args[8],
                "metadataUri": args[9],
                "transactionHash": tx,
            }
        self.receipts[tx] = {
            "transactionHash": tx,
            "blockNumber": hex(self.latest_block),
            "status": "0x1",
            "to": to,
            "logs": [
                {
                    "address": CONTRACT_ADDRESS,
                    "topics": [
                        EVENT_CREATED_TOPIC,
                        "0x" + format(event_id, "064x"),
                        "0x" + "0" * 24 + creator[2:],
                    ],
                }
            ],
        }
        return event_id

    def revert(self, tx):
        self.receipts[tx] = {
            "transactionHash": tx,
            "blockNumber": hex(self.latest_block),
            "status": "0x0",
            "to": CONTRACT_ADDRESS,
            "logs": [],
        }


@pytest.fixture(scope="function")
def session_factory():
    """Session factory over a fresh schema."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(TEST_DATABASE_URL)

    Base.metadata.create_all(engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def fake_minio():
    return FakeMinio()


@pytest.fixture
def fake_ledger():
    return FakeLedgerClient()


@pytest.fixture
def database(session_factory):
    return DatabaseProvider(session_factory)


@pytest.fixture
def content(fake_minio):
    return ContentStoreProvider(client=fake_minio, bucket="test-content")


@pytest.fixture
def ledger(fake_ledger):
    return LedgerProvider(
        client=fake_ledger,
        contract_address=CONTRACT_ADDRESS,
        chain_id=43113,
        confirm_timeout=0,
        poll_interval=0,
        event_created_topic=EVENT_CREATED_TOPIC,
    )


@pytest.fixture
def monitor(database, ledger, content):
    return HealthMonitor(
        providers={database.name: database, ledger.name: ledger, content.name: content},
        store=InMemoryHealthStateStore(),
    )


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def orchestrator(database, ledger, content, monitor, sleeps):
    return EventOrchestrator(database, ledger, content, monitor=monitor, sleep=sleeps.append)


@pytest.fixture
def services(session_factory, ledger, content):
    """Fully wired container over the fakes."""
    wired = Services(session_factory, ledger=ledger, content=content, state_store=InMemoryHealthStateStore())
    wired.orchestrator.sleep = lambda seconds: None
    return wired


@pytest.fixture
def event_input():
    """Factory for a valid creation payload."""

    def make(**overrides):
        start = (utcnow() + timedelta(days=30)).replace(microsecond=0)
        data = {
            "title": "Summer Music Night",
            "description": "Live sets under the stars",
            "location": "Lagos",
            "start_time": start,
            "end_time": start + timedelta(hours=4),
            "max_capacity": 100,
            "ticket_price": "0.01",
            "category": "music",
            "tags": ["live", "outdoor"],
            "creator_id": CREATOR,
        }
        data.update(overrides)
        return data

    return make
