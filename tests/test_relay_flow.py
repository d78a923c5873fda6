# tests/test_relay_flow.py
"""
End-to-end relay behaviour against in-memory bridge chains.
"""

import random

import pytest

from relayer.database.tables import DBCursor
from relayer.services.orchestrator import RelayOrchestrator
from relayer.types import (
    ChainRejectionError,
    Direction,
    TransferStatus,
    TransientInfraError,
)

from conftest import STRANGER, USER, OTHER_USER, SimulatedCrash, wait_until


def mint_pipeline(orchestrator):
    return orchestrator.pipelines[Direction.LOCK_TO_MINT]


def release_pipeline(orchestrator):
    return orchestrator.pipelines[Direction.BURN_TO_RELEASE]


def transfer_for(orchestrator, event):
    return orchestrator.transfers.get(event.identity.transfer_id())


# === Scenarios ===

def test_lock_then_mint(orchestrator, source_chain, dest_chain):
    """Lock(U, 100, U) on source -> mintWrapped(U, 100) on destination"""
    event = source_chain.lock(USER, 100, USER)
    source_chain.mine(2)

    assert mint_pipeline(orchestrator).run_once() == 1

    transfer = transfer_for(orchestrator, event)
    assert transfer.status is TransferStatus.CONFIRMED
    assert transfer.resulting_tx_hash is not None
    assert dest_chain.wrapped_balance(USER) == 100
    assert source_chain.locked == 100


def test_burn_then_release(orchestrator, source_chain, dest_chain):
    """Burn(U, 100, U) on destination -> release(U, 100) on source"""
    source_chain.lock(USER, 100, USER)
    source_chain.mine(2)
    mint_pipeline(orchestrator).run_once()
    locked_before = source_chain.locked
    balance_before = source_chain.native_balance(USER)

    event = dest_chain.burn(USER, 100, USER)
    dest_chain.mine(2)
    assert release_pipeline(orchestrator).run_once() == 1

    transfer = transfer_for(orchestrator, event)
    assert transfer.status is TransferStatus.CONFIRMED
    assert transfer.direction is Direction.BURN_TO_RELEASE
    assert source_chain.locked == locked_before - 100
    assert source_chain.native_balance(USER) == balance_before + 100
    assert dest_chain.wrapped_balance(USER) == 0


def test_destination_field_is_credited(orchestrator, source_chain, dest_chain):
    source_chain.lock(USER, 40, OTHER_USER)
    source_chain.mine(2)

    mint_pipeline(orchestrator).run_once()

    assert dest_chain.wrapped_balance(OTHER_USER) == 40
    assert dest_chain.wrapped_balance(USER) == 0


def test_relayer_mismatch_dead_letters_and_keeps_lock(orchestrator, source_chain, dest_chain):
    """A reverting mint ends in DeadLettered; the locked funds stay locked"""
    dest_chain.authorized_relayer = STRANGER
    event = source_chain.lock(USER, 100, USER)
    source_chain.mine(2)

    mint_pipeline(orchestrator).run_once()

    transfer = transfer_for(orchestrator, event)
    assert transfer.status is TransferStatus.DEAD_LETTERED
    assert transfer.failure_kind == "rejected"
    assert "not the relayer" in transfer.last_error
    assert source_chain.locked == 100
    assert source_chain.native_balance(USER) == 900
    assert dest_chain.total_minted == 0
    assert mint_pipeline(orchestrator).stats()['dead_lettered'] == 1


def test_rejection_halts_only_the_affected_transfer(orchestrator, source_chain, dest_chain):
    first = source_chain.lock(USER, 10, USER)
    second = source_chain.lock(USER, 20, USER)
    source_chain.mine(2)
    dest_chain.prepare_failures = [ChainRejectionError("execution reverted: paused")]

    mint_pipeline(orchestrator).run_once()

    assert transfer_for(orchestrator, first).status is TransferStatus.DEAD_LETTERED
    assert transfer_for(orchestrator, second).status is TransferStatus.CONFIRMED
    assert dest_chain.wrapped_balance(USER) == 20


def test_transient_failures_are_retried(orchestrator, source_chain, dest_chain):
    event = source_chain.lock(USER, 100, USER)
    source_chain.mine(2)
    dest_chain.broadcast_failures = [TransientInfraError("timeout"), TransientInfraError("timeout")]

    mint_pipeline(orchestrator).run_once()

    transfer = transfer_for(orchestrator, event)
    assert transfer.status is TransferStatus.CONFIRMED
    assert transfer.retry_count == 2
    assert dest_chain.sign_count == 1
    assert dest_chain.wrapped_balance(USER) == 100


def test_exhausted_retries_dead_letter(orchestrator, source_chain, dest_chain):
    event = source_chain.lock(USER, 100, USER)
    source_chain.mine(2)
    dest_chain.broadcast_failures = [TransientInfraError("timeout") for _ in range(3)]

    mint_pipeline(orchestrator).run_once()

    transfer = transfer_for(orchestrator, event)
    assert transfer.status is TransferStatus.DEAD_LETTERED
    assert transfer.failure_kind == "transient"
    assert transfer.retry_count == 3
    assert dest_chain.total_minted == 0


def test_requeued_transfer_is_redispatched(orchestrator, source_chain, dest_chain):
    dest_chain.authorized_relayer = STRANGER
    event = source_chain.lock(USER, 100, USER)
    source_chain.mine(2)
    mint_pipeline(orchestrator).run_once()

    dest_chain.authorized_relayer = dest_chain.signer
    orchestrator.state_machine.requeue(event.identity.transfer_id())
    mint_pipeline(orchestrator).recover()

    assert transfer_for(orchestrator, event).status is TransferStatus.CONFIRMED
    assert dest_chain.wrapped_balance(USER) == 100


# === Exactly-once ===

def test_duplicate_delivery_mints_once(orchestrator, source_chain, dest_chain):
    event = source_chain.lock(USER, 100, USER)
    source_chain.mine(2)
    source_chain.duplicate_logs = True

    mint_pipeline(orchestrator).run_once()

    assert transfer_for(orchestrator, event).status is TransferStatus.CONFIRMED
    assert len(dest_chain.applied) == 1
    assert dest_chain.wrapped_balance(USER) == 100
    assert mint_pipeline(orchestrator).stats()['duplicates'] == 1


def test_rescan_after_restart_mints_once(relayer_config, db_manager, clients, source_chain, dest_chain):
    source_chain.lock(USER, 100, USER)
    source_chain.mine(2)
    first = RelayOrchestrator(relayer_config, db_manager, clients)
    mint_pipeline(first).run_once()

    # Forget the cursor so the restarted reader sees the same logs again
    cursor_repo = db_manager.get_cursor_repo()
    with db_manager.get_transaction() as session:
        session.query(DBCursor).delete()
    assert cursor_repo.get_last_block(source_chain.chain_id, Direction.LOCK_TO_MINT) is None

    second = RelayOrchestrator(relayer_config, db_manager, clients)
    mint_pipeline(second).run_once()

    assert len(dest_chain.applied) == 1
    assert mint_pipeline(second).stats()['duplicates'] == 1


def test_conservation_under_random_interleaving(orchestrator, source_chain, dest_chain):
    rng = random.Random(7)
    locked_total = 0

    for _ in range(12):
        amount = rng.randint(1, 50)
        source_chain.lock(USER, amount, USER)
        locked_total += amount
        source_chain.duplicate_logs = rng.random() < 0.5
        if rng.random() < 0.3:
            dest_chain.broadcast_failures = [TransientInfraError("flaky")]
        source_chain.mine(rng.randint(0, 3))

        mint_pipeline(orchestrator).run_once()
        assert dest_chain.total_minted <= locked_total

    source_chain.duplicate_logs = False
    source_chain.mine(5)
    while mint_pipeline(orchestrator).run_once():
        assert dest_chain.total_minted <= locked_total

    assert dest_chain.total_minted == locked_total
    assert orchestrator.transfers.count_by_status()[TransferStatus.CONFIRMED.value] == 12


# === Crash recovery ===

def test_crash_with_pending_submission_does_not_resubmit(relayer_config, db_manager, clients,
                                                         source_chain, dest_chain):
    event = source_chain.lock(USER, 100, USER)
    source_chain.mine(2)
    dest_chain.auto_mine = False
    dest_chain.crash_after_broadcast = True

    crashed = RelayOrchestrator(relayer_config, db_manager, clients)
    with pytest.raises(SimulatedCrash):
        mint_pipeline(crashed).run_once()
    assert transfer_for(crashed, event).status is TransferStatus.DISPATCHING
    assert dest_chain.is_pending(transfer_for(crashed, event).submission_tx_hash)

    # The node includes the original before the restarted relayer looks at it
    dest_chain.auto_mine = True
    restarted = RelayOrchestrator(relayer_config, db_manager, clients)
    mint_pipeline(restarted).recover()

    assert transfer_for(restarted, event).status is TransferStatus.CONFIRMED
    assert dest_chain.sign_count == 1
    assert len(dest_chain.applied) == 1

    # The unacknowledged batch is replayed and recognised
    mint_pipeline(restarted).run_once()
    assert len(dest_chain.applied) == 1


def test_crash_after_success_completes_normally(relayer_config, db_manager, clients,
                                                source_chain, dest_chain):
    event = source_chain.lock(USER, 100, USER)
    source_chain.mine(2)
    dest_chain.crash_after_broadcast = True

    crashed = RelayOrchestrator(relayer_config, db_manager, clients)
    with pytest.raises(SimulatedCrash):
        mint_pipeline(crashed).run_once()
    dest_chain.mine_pending()
    assert dest_chain.wrapped_balance(USER) == 100

    restarted = RelayOrchestrator(relayer_config, db_manager, clients)
    mint_pipeline(restarted).recover()

    transfer = transfer_for(restarted, event)
    assert transfer.status is TransferStatus.CONFIRMED
    assert transfer.resulting_tx_hash == transfer.submission_tx_hash
    assert dest_chain.sign_count == 1
    assert dest_chain.wrapped_balance(USER) == 100


def test_lagging_receipt_after_restart_is_flagged_not_resubmitted(relayer_config, db_manager, clients,
                                                                  source_chain, dest_chain):
    event = source_chain.lock(USER, 100, USER)
    source_chain.mine(2)
    dest_chain.crash_after_broadcast = True

    crashed = RelayOrchestrator(relayer_config, db_manager, clients)
    with pytest.raises(SimulatedCrash):
        mint_pipeline(crashed).run_once()
    dest_chain.mine_pending()
    dest_chain.hide_receipts = True

    restarted = RelayOrchestrator(relayer_config, db_manager, clients)
    mint_pipeline(restarted).recover()

    transfer = transfer_for(restarted, event)
    assert transfer.status is TransferStatus.FLAGGED
    assert transfer.failure_kind == "reorganized"
    assert dest_chain.sign_count == 1
    assert dest_chain.wrapped_balance(USER) == 100
    assert mint_pipeline(restarted).stats()['flagged'] == 1


def test_second_worker_on_stale_snapshot_mints_once(relayer_config, db_manager, clients,
                                                    source_chain, dest_chain):
    event = source_chain.lock(USER, 100, USER)
    source_chain.mine(2)

    first = RelayOrchestrator(relayer_config, db_manager, clients)
    second = RelayOrchestrator(relayer_config, db_manager, clients)
    _, observed = first.state_machine.observe(event)
    snapshot = first.state_machine.begin_dispatch(observed.transfer_id)

    assert mint_pipeline(first).drive(snapshot).status is TransferStatus.CONFIRMED
    assert mint_pipeline(second).drive(snapshot).status is TransferStatus.CONFIRMED

    assert len(dest_chain.applied) == 1
    assert dest_chain.wrapped_balance(USER) == 100


# === Reorganization ===

def test_vanished_event_is_flagged(orchestrator, source_chain, dest_chain):
    event = source_chain.lock(USER, 100, USER)
    orchestrator.state_machine.observe(event)
    source_chain.remove_event(event)

    mint_pipeline(orchestrator).recover()

    transfer = transfer_for(orchestrator, event)
    assert transfer.status is TransferStatus.FLAGGED
    assert transfer.failure_kind == "reorganized"
    assert dest_chain.total_minted == 0
    assert mint_pipeline(orchestrator).stats()['flagged'] == 1


def test_unconfirmed_events_are_not_relayed(orchestrator, source_chain, dest_chain):
    source_chain.auto_advance = False
    event = source_chain.lock(USER, 100, USER)

    assert mint_pipeline(orchestrator).run_once() == 0
    assert transfer_for(orchestrator, event) is None

    source_chain.mine(2)
    assert mint_pipeline(orchestrator).run_once() == 1
    assert transfer_for(orchestrator, event).status is TransferStatus.CONFIRMED


# === Orchestration ===

def test_both_directions_run_concurrently(orchestrator, source_chain, dest_chain):
    orchestrator.start()
    assert orchestrator.is_running

    source_chain.lock(USER, 100, USER)
    assert wait_until(lambda: dest_chain.wrapped_balance(USER) == 100)

    dest_chain.burn(USER, 60, USER)
    assert wait_until(lambda: source_chain.native_balance(USER) == 960)

    orchestrator.stop(timeout=5)
    assert not orchestrator.is_running

    metrics = orchestrator.metrics()
    assert metrics['transfers'][TransferStatus.CONFIRMED.value] == 2
    assert metrics['pipelines'][Direction.LOCK_TO_MINT.value]['confirmed'] == 1
    assert metrics['pipelines'][Direction.BURN_TO_RELEASE.value]['confirmed'] == 1
    assert metrics['in_flight'] == {source_chain.chain_id: 0, dest_chain.chain_id: 0}


def test_authorization_check_reports_mismatch(orchestrator, dest_chain):
    dest_chain.authorized_relayer = STRANGER

    assert orchestrator.check_authorization() == {"source": True, "destination": False}


def test_metrics_before_any_activity(orchestrator):
    metrics = orchestrator.metrics()

    assert set(metrics['transfers']) == {status.value for status in TransferStatus}
    assert all(count == 0 for count in metrics['transfers'].values())
    assert metrics['pipelines'][Direction.LOCK_TO_MINT.value]['cursor'] is None
