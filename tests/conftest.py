# tests/conftest.py
"""
pytest fixtures for the bridge relayer.

Chains are simulated in memory by FakeBridgeChain; persistence uses a
SQLite file per test. Nothing here touches the network.
"""

import hashlib
import json
import threading
import time
from typing import Dict, List, Optional

import pytest

from relayer.clients.interfaces import ChainClientInterface
from relayer.clients.registry import ChainClients
from relayer.core.logging import RelayerLogger
from relayer.database.connection import DatabaseManager
from relayer.services.orchestrator import RelayOrchestrator
from relayer.types import (
    BridgeAction,
    ChainConfig,
    ChainEvent,
    ChainRejectionError,
    DatabaseConfig,
    DispatchConfig,
    EventIdentity,
    EventKind,
    EvmAddress,
    EvmHash,
    InsufficientFundsError,
    RelayerConfig,
    RetryConfig,
    SignedSubmission,
    SubmittedTx,
    TransientInfraError,
    TxReceipt,
)


RELAYER = EvmAddress("0x1111111111111111111111111111111111111111")
STRANGER = EvmAddress("0x9999999999999999999999999999999999999999")
USER = EvmAddress("0x2222222222222222222222222222222222222222")
OTHER_USER = EvmAddress("0x3333333333333333333333333333333333333333")

SOURCE_CHAIN_ID = 31337
DEST_CHAIN_ID = 31338


class SimulatedCrash(RuntimeError):
    """Stands in for the relayer process dying at an awkward moment."""


class FakeBridgeChain(ChainClientInterface):
    """
    In-memory ledger running one side of the bridge contract.

    role="source" holds the vault: lock() emits Locked, release() is
    relayer-gated. role="destination" holds the wrapped token: burn()
    emits Burned, mintWrapped() is relayer-gated.

    Transactions are kept in a mempool and mined on the next poll when
    `auto_mine` is set. With `auto_advance` every tip query produces one
    empty block, so confirmation waits always terminate.
    """

    def __init__(self, name: str, chain_id: int, counterpart_chain_id: int, role: str,
                 auto_mine: bool = True, auto_advance: bool = True):
        self.name = name
        self.chain_id = chain_id
        self.counterpart_chain_id = counterpart_chain_id
        self.role = role
        self.auto_mine = auto_mine
        self.auto_advance = auto_advance

        self.tip = 0
        self.authorized_relayer: EvmAddress = RELAYER
        self.signer: EvmAddress = RELAYER
        self.gas_balance = 10**18

        self.native: Dict[str, int] = {}
        self.locked = 0
        self.wrapped: Dict[str, int] = {}
        self.total_minted = 0
        self.total_released = 0

        self.events: List[Dict] = []
        self.mempool: Dict[str, Dict] = {}
        self.receipts: Dict[str, TxReceipt] = {}
        self.confirmed_nonce = 0
        self.applied: List[Dict] = []
        self.sign_count = 0

        self.read_failures = 0
        self.prepare_failures: List[Exception] = []
        self.broadcast_failures: List[Exception] = []
        self.crash_after_broadcast = False
        self.duplicate_logs = False
        self.hide_receipts = False
        self.get_events_calls = 0

        self._lock = threading.RLock()

    # === Test controls ===

    def mine(self, blocks: int = 1) -> int:
        with self._lock:
            self.tip += blocks
            return self.tip

    def fund(self, account: str, amount: int) -> None:
        with self._lock:
            self.native[account.lower()] = self.native.get(account.lower(), 0) + amount

    def lock(self, user: str, amount: int, destination: str) -> ChainEvent:
        with self._lock:
            assert self.role == "source"
            assert self.native.get(user.lower(), 0) >= amount, "insufficient user balance"
            self.native[user.lower()] -= amount
            self.locked += amount
            return self._emit(EventKind.LOCKED, user, amount, destination)

    def burn(self, user: str, amount: int, destination: str) -> ChainEvent:
        with self._lock:
            assert self.role == "destination"
            assert self.wrapped.get(user.lower(), 0) >= amount, "insufficient wrapped balance"
            self.wrapped[user.lower()] -= amount
            return self._emit(EventKind.BURNED, user, amount, destination)

    def remove_event(self, event: ChainEvent) -> None:
        """Simulate a reorganization dropping the log."""
        with self._lock:
            for record in self.events:
                if record["event"] == event:
                    record["removed"] = True

    def wrapped_balance(self, account: str) -> int:
        return self.wrapped.get(account.lower(), 0)

    def native_balance(self, account: str) -> int:
        return self.native.get(account.lower(), 0)

    def _emit(self, kind: EventKind, user: str, amount: int, destination: str) -> ChainEvent:
        self.tip += 1
        log_index = sum(1 for r in self.events if r["event"].block_number == self.tip)
        tx_hash = "0x" + hashlib.sha256(f"{self.chain_id}:{self.tip}:{len(self.events)}".encode()).hexdigest()
        event = ChainEvent(
            kind=kind,
            user=EvmAddress(user),
            amount=amount,
            destination=EvmAddress(destination),
            source_chain_id=self.chain_id,
            dest_chain_id=self.counterpart_chain_id,
            block_number=self.tip,
            tx_hash=EvmHash(tx_hash),
            log_index=log_index,
        )
        self.events.append({"event": event, "removed": False})
        return event

    # === ChainClientInterface ===

    @property
    def relayer_address(self) -> EvmAddress:
        return self.signer

    def get_latest_block_number(self) -> int:
        with self._lock:
            if self.auto_mine:
                self.mine_pending()
            tip = self.tip
            if self.auto_advance:
                self.tip += 1
            return tip

    def get_events(self, kind: EventKind, from_block: int, to_block: int) -> List[ChainEvent]:
        with self._lock:
            self.get_events_calls += 1
            if self.read_failures > 0:
                self.read_failures -= 1
                raise TransientInfraError("endpoint unreachable", chain=self.name)

            found = [
                r["event"] for r in self.events
                if not r["removed"]
                and r["event"].kind is kind
                and from_block <= r["event"].block_number <= to_block
            ]
            if self.duplicate_logs:
                found = found + found
            return sorted(found, key=lambda e: (e.block_number, e.log_index))

    def event_exists(self, identity: EventIdentity) -> bool:
        with self._lock:
            for record in self.events:
                event = record["event"]
                if (event.tx_hash.lower() == identity.tx_hash.lower()
                        and event.log_index == identity.log_index
                        and event.block_number == identity.block_number):
                    return not record["removed"]
            return False

    def prepare_submission(self, action: BridgeAction, recipient: EvmAddress, amount: int,
                           nonce: int) -> SignedSubmission:
        with self._lock:
            if self.prepare_failures:
                raise self.prepare_failures.pop(0)
            if self.signer.lower() != self.authorized_relayer.lower():
                raise ChainRejectionError("execution reverted: caller is not the relayer", chain=self.name)
            if self.gas_balance <= 0:
                raise InsufficientFundsError("insufficient funds for gas * price + value", chain=self.name)
            expected = BridgeAction.RELEASE if self.role == "source" else BridgeAction.MINT
            if action is not expected:
                raise ChainRejectionError(f"execution reverted: no {action.function_name} here", chain=self.name)
            if action is BridgeAction.RELEASE and self.locked < amount:
                raise ChainRejectionError("execution reverted: vault underfunded", chain=self.name)

            # Each signing gets a distinct hash, as a changing gas price would produce
            self.sign_count += 1
            tx = {
                "action": action.value,
                "to": recipient.lower(),
                "amount": amount,
                "nonce": nonce,
                "salt": self.sign_count,
            }
            raw = json.dumps(tx, sort_keys=True).encode()
            tx_hash = "0x" + hashlib.sha256(raw).hexdigest()
            return SignedSubmission(tx_hash=EvmHash(tx_hash), nonce=nonce, raw_transaction=raw)

    def broadcast(self, signed: SignedSubmission) -> SubmittedTx:
        with self._lock:
            if self.broadcast_failures:
                raise self.broadcast_failures.pop(0)
            if signed.nonce < self.confirmed_nonce:
                raise TransientInfraError("nonce too low", chain=self.name)

            tx = json.loads(signed.raw_transaction.decode())
            tx["hash"] = signed.tx_hash
            self.mempool[signed.tx_hash] = tx

            if self.crash_after_broadcast:
                self.crash_after_broadcast = False
                raise SimulatedCrash("relayer died right after broadcast")
            return SubmittedTx(tx_hash=signed.tx_hash, nonce=signed.nonce)

    def mine_pending(self) -> int:
        """Include mempool transactions in nonce order. Returns how many were mined."""
        with self._lock:
            mined = 0
            while True:
                ready = [tx for tx in self.mempool.values() if tx["nonce"] == self.confirmed_nonce]
                if not ready:
                    break
                tx = ready[0]
                self.tip += 1
                status = self._apply(tx)
                self.receipts[tx["hash"]] = TxReceipt(
                    tx_hash=EvmHash(tx["hash"]), block_number=self.tip, status=status, gas_used=50_000,
                )
                self.confirmed_nonce += 1
                # Anything else competing for the same nonce is now dead
                self.mempool = {h: t for h, t in self.mempool.items() if t["nonce"] != tx["nonce"]}
                mined += 1
            return mined

    def _apply(self, tx: Dict) -> int:
        if tx["action"] == BridgeAction.MINT.value:
            self.wrapped[tx["to"]] = self.wrapped.get(tx["to"], 0) + tx["amount"]
            self.total_minted += tx["amount"]
        else:
            if self.locked < tx["amount"]:
                return 0
            self.locked -= tx["amount"]
            self.native[tx["to"]] = self.native.get(tx["to"], 0) + tx["amount"]
            self.total_released += tx["amount"]
        self.applied.append(tx)
        return 1

    def get_receipt(self, tx_hash: EvmHash) -> Optional[TxReceipt]:
        with self._lock:
            if self.auto_mine:
                self.mine_pending()
            if self.hide_receipts:
                # A load-balanced endpoint whose receipt index lags the chain
                return None
            return self.receipts.get(tx_hash)

    def is_pending(self, tx_hash: EvmHash) -> bool:
        with self._lock:
            return tx_hash in self.mempool

    def get_confirmed_nonce(self) -> int:
        with self._lock:
            return self.confirmed_nonce

    def get_pending_nonce(self) -> int:
        with self._lock:
            if not self.mempool:
                return self.confirmed_nonce
            return max(self.confirmed_nonce, max(tx["nonce"] for tx in self.mempool.values()) + 1)

    def get_authorized_relayer(self) -> Optional[EvmAddress]:
        return self.authorized_relayer


def wait_until(predicate, timeout: float = 10.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


# === Configuration ===

def make_chain_config(name: str, chain_id: int, **overrides) -> ChainConfig:
    values = dict(
        name=name,
        chain_id=chain_id,
        rpc_url="http://127.0.0.1:8545",
        bridge_address=EvmAddress("0x" + ("ab" if name == "source" else "cd") * 20),
        genesis_block=0,
        confirmation_depth=2,
        max_batch_blocks=100,
        poll_interval=0.01,
        max_in_flight=1,
    )
    values.update(overrides)
    return ChainConfig(**values)


def make_config(db_url: str, **overrides) -> RelayerConfig:
    values = dict(
        source=make_chain_config("source", SOURCE_CHAIN_ID),
        destination=make_chain_config("destination", DEST_CHAIN_ID),
        database=DatabaseConfig(url=db_url),
        retry=RetryConfig(max_retries=3, base_delay=0.0, max_delay=0.0, jitter=0.0),
        read_retry=RetryConfig(max_retries=1, base_delay=0.0, max_delay=0.0, jitter=0.0),
        dispatch=DispatchConfig(receipt_poll_interval=0.0, confirmation_timeout=5.0),
    )
    values.update(overrides)
    return RelayerConfig(**values)


@pytest.fixture(autouse=True, scope="session")
def quiet_logging():
    RelayerLogger.reset()
    RelayerLogger.configure(log_level="WARNING", console_enabled=True, structured_format=True)
    yield
    RelayerLogger.reset()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'relayer.db'}"


@pytest.fixture
def relayer_config(db_url):
    return make_config(db_url)


@pytest.fixture
def db_manager(relayer_config):
    manager = DatabaseManager(relayer_config.database)
    manager.initialize()
    manager.create_schema()
    yield manager
    manager.shutdown()


@pytest.fixture
def source_chain():
    chain = FakeBridgeChain("source", SOURCE_CHAIN_ID, DEST_CHAIN_ID, role="source")
    chain.fund(USER, 1_000)
    return chain


@pytest.fixture
def dest_chain():
    return FakeBridgeChain("destination", DEST_CHAIN_ID, SOURCE_CHAIN_ID, role="destination")


@pytest.fixture
def clients(source_chain, dest_chain):
    return ChainClients(source=source_chain, destination=dest_chain)


@pytest.fixture
def orchestrator(relayer_config, db_manager, clients):
    orchestrator = RelayOrchestrator(relayer_config, db_manager, clients)
    yield orchestrator
    orchestrator.stop(timeout=5)


@pytest.fixture
def state_machine(orchestrator):
    return orchestrator.state_machine


def make_event(chain_id: int = SOURCE_CHAIN_ID, block_number: int = 10, log_index: int = 0,
               amount: int = 100, kind: EventKind = EventKind.LOCKED, tx_seed: str = "a") -> ChainEvent:
    return ChainEvent(
        kind=kind,
        user=USER,
        amount=amount,
        destination=USER,
        source_chain_id=chain_id,
        dest_chain_id=DEST_CHAIN_ID if chain_id == SOURCE_CHAIN_ID else SOURCE_CHAIN_ID,
        block_number=block_number,
        tx_hash=EvmHash("0x" + hashlib.sha256(tx_seed.encode()).hexdigest()),
        log_index=log_index,
    )
