# relayer/services/orchestrator.py

import signal
import threading
from typing import Dict, List, Optional

from ..clients.registry import ChainClients
from ..core.logging import LoggingMixin
from ..database.connection import DatabaseManager
from ..pipeline.admission import AdmissionController
from ..pipeline.dispatcher import ActionDispatcher
from ..pipeline.nonce_manager import NonceManager
from ..pipeline.relay_pipeline import RelayPipeline
from ..stream.log_reader import ChainLogReader
from ..transform.state_machine import TransferStateMachine
from ..types import ChainConfig, ChainError, Direction, RelayerConfig
from .quorum import SignatureCollector


class RelayOrchestrator(LoggingMixin):
    """
    Runs the mint and release pipelines side by side.

    Each direction gets its own worker thread. The only state they share
    is the database (ledger and transfer rows, all mutated by
    compare-and-set) and the per-chain admission cap.
    """

    def __init__(self,
                 config: RelayerConfig,
                 db_manager: DatabaseManager,
                 clients: ChainClients,
                 collector: Optional[SignatureCollector] = None,
                 state_machine: Optional[TransferStateMachine] = None):
        self.config = config
        self.db_manager = db_manager
        self.clients = clients
        self.collector = collector
        self.stop_event = threading.Event()

        self.transfers = db_manager.get_transfer_repo()
        self.state_machine = state_machine or TransferStateMachine(
            db_manager.get_ledger(),
            self.transfers,
            max_retries=config.retry.max_retries,
        )
        self.admission = AdmissionController({
            chain.chain_id: chain.max_in_flight for chain in (config.source, config.destination)
        })
        self.nonces = {
            client.chain_id: NonceManager(client) for client in clients.all()
        }

        self.pipelines: Dict[Direction, RelayPipeline] = {
            Direction.LOCK_TO_MINT: self._build_pipeline(
                Direction.LOCK_TO_MINT, config.source, config.destination),
            Direction.BURN_TO_RELEASE: self._build_pipeline(
                Direction.BURN_TO_RELEASE, config.destination, config.source),
        }
        self._threads: List[threading.Thread] = []

    def _build_pipeline(self, direction: Direction, event_chain: ChainConfig,
                        action_chain: ChainConfig) -> RelayPipeline:
        reader = ChainLogReader(
            client=self.clients.for_chain(event_chain.chain_id),
            cursor_repo=self.db_manager.get_cursor_repo(),
            chain=event_chain,
            direction=direction,
            read_retry=self.config.read_retry,
        )
        dispatcher = ActionDispatcher(
            client=self.clients.for_chain(action_chain.chain_id),
            chain=action_chain,
            transfers=self.transfers,
            nonces=self.nonces[action_chain.chain_id],
            admission=self.admission,
            config=self.config.dispatch,
        )
        return RelayPipeline(
            direction=direction,
            reader=reader,
            state_machine=self.state_machine,
            dispatcher=dispatcher,
            retry=self.config.retry,
            dispatch=self.config.dispatch,
            stop_event=self.stop_event,
            collector=self.collector,
        )

    # === Lifecycle ===

    def check_authorization(self) -> Dict[str, bool]:
        """Compare each bridge's on-chain relayer with our signing address."""
        results = {}
        for client in self.clients.all():
            try:
                authorized = client.get_authorized_relayer()
                ours = client.relayer_address
            except ChainError as e:
                self.log_warning("Could not verify relayer authorization", chain=client.name, error=str(e))
                continue
            if authorized is None:
                continue

            matches = authorized.lower() == ours.lower()
            results[client.name] = matches
            if not matches:
                self.log_warning("Bridge contract authorizes a different relayer; submissions will revert",
                                 chain=client.name, authorized=authorized, signer=ours)
        return results

    def start(self) -> None:
        if self.is_running:
            self.logger.warning("Orchestrator already running")
            return

        self.stop_event.clear()
        self.check_authorization()

        self._threads = [
            threading.Thread(target=pipeline.run, name=f"relay-{direction.value}", daemon=True)
            for direction, pipeline in self.pipelines.items()
        ]
        for thread in self._threads:
            thread.start()
        self.log_info("Relay orchestrator started", pipelines=len(self._threads))

    def request_stop(self) -> None:
        self.stop_event.set()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal shutdown and wait for both workers to leave their loops."""
        self.stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        self.log_info("Relay orchestrator stopped")

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def run_forever(self, install_signal_handlers: bool = True) -> None:
        if install_signal_handlers:
            self._install_signal_handlers()
        self.start()
        try:
            while self.is_running:
                for thread in self._threads:
                    thread.join(1.0)
        finally:
            self.stop()

    def _install_signal_handlers(self) -> None:
        def handle(signum, frame):
            self.log_info("Shutdown signal received", signal=signal.Signals(signum).name)
            self.request_stop()

        signal.signal(signal.SIGINT, handle)
        signal.signal(signal.SIGTERM, handle)

    # === Observability ===

    def metrics(self) -> Dict[str, object]:
        return {
            'transfers': self.transfers.count_by_status(),
            'pipelines': {
                direction.value: pipeline.stats() for direction, pipeline in self.pipelines.items()
            },
            'in_flight': {
                chain_id: self.admission.in_flight(chain_id) for chain_id in self.nonces
            },
        }
