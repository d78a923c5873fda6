# relayer/clients/web3_client.py

from typing import List, Optional

import requests
from eth_account import Account
from eth_utils import to_checksum_address
from web3 import Web3
from web3.exceptions import (
    ContractLogicError,
    TimeExhausted,
    TransactionNotFound,
    Web3Exception,
)

from ..core.logging import LoggingMixin
from ..decode.log_decoder import BridgeLogDecoder, to_hex
from ..types import (
    BridgeAction,
    ChainConfig,
    ChainEvent,
    ChainRejectionError,
    EventIdentity,
    EventKind,
    EvmAddress,
    EvmHash,
    InsufficientFundsError,
    SignedSubmission,
    SubmittedTx,
    TransientInfraError,
    TxReceipt,
)
from .abi import BRIDGE_ABI, event_topic
from .interfaces import ChainClientInterface


INSUFFICIENT_FUNDS_MARKERS = ("insufficient funds", "insufficient balance")
NONCE_MARKERS = ("nonce too low", "replacement transaction underpriced", "already known", "nonce too high")


class Web3ChainClient(ChainClientInterface, LoggingMixin):
    """
    Bridge contract access over JSON-RPC.

    Raw web3/requests failures are translated into the relayer's error
    taxonomy here so nothing above this layer sees provider exceptions.
    """

    def __init__(self, chain: ChainConfig, counterpart_chain_id: int, private_key: Optional[str] = None):
        self.chain = chain
        self.name = chain.name
        self.chain_id = chain.chain_id
        self.counterpart_chain_id = counterpart_chain_id

        self.w3 = Web3(Web3.HTTPProvider(chain.rpc_url, request_kwargs={'timeout': chain.request_timeout}))
        if chain.poa:
            from web3.middleware import ExtraDataToPOAMiddleware
            self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        self.bridge_address = to_checksum_address(chain.bridge_address)
        self.contract = self.w3.eth.contract(address=self.bridge_address, abi=BRIDGE_ABI)
        self._account = Account.from_key(private_key) if private_key else None
        self._decoders = {}

    @property
    def relayer_address(self) -> EvmAddress:
        if self._account is None:
            raise ChainRejectionError("No relayer credential configured", chain=self.name)
        return EvmAddress(self._account.address)

    def _decoder(self, kind: EventKind) -> BridgeLogDecoder:
        if kind not in self._decoders:
            self._decoders[kind] = BridgeLogDecoder(kind, self.chain_id, self.counterpart_chain_id)
        return self._decoders[kind]

    # === Reads ===

    def get_latest_block_number(self) -> int:
        return self._call(lambda: self.w3.eth.block_number, "eth_blockNumber")

    def get_events(self, kind: EventKind, from_block: int, to_block: int) -> List[ChainEvent]:
        logs = self._call(lambda: self.w3.eth.get_logs({
            "address": self.bridge_address,
            "fromBlock": from_block,
            "toBlock": to_block,
            "topics": [event_topic(kind.abi_name)],
        }), "eth_getLogs")
        return self._decoder(kind).decode_many([dict(log) for log in logs])

    def event_exists(self, identity: EventIdentity) -> bool:
        receipt = self._fetch_receipt(identity.tx_hash)
        if receipt is None or int(receipt["blockNumber"]) != identity.block_number:
            return False
        for log in receipt["logs"]:
            if int(log["logIndex"]) == identity.log_index and not log.get("removed", False):
                return to_checksum_address(log["address"]) == self.bridge_address
        return False

    def get_receipt(self, tx_hash: EvmHash) -> Optional[TxReceipt]:
        receipt = self._fetch_receipt(tx_hash)
        if receipt is None:
            return None
        return TxReceipt(
            tx_hash=EvmHash(to_hex(receipt["transactionHash"])),
            block_number=int(receipt["blockNumber"]),
            status=int(receipt["status"]),
            gas_used=int(receipt.get("gasUsed", 0)),
        )

    def is_pending(self, tx_hash: EvmHash) -> bool:
        try:
            tx = self._call(lambda: self.w3.eth.get_transaction(tx_hash), "eth_getTransactionByHash")
        except TransactionNotFound:
            return False
        return tx.get("blockNumber") is None

    def get_confirmed_nonce(self) -> int:
        return self._call(
            lambda: self.w3.eth.get_transaction_count(self.relayer_address, "latest"),
            "eth_getTransactionCount",
        )

    def get_pending_nonce(self) -> int:
        return self._call(
            lambda: self.w3.eth.get_transaction_count(self.relayer_address, "pending"),
            "eth_getTransactionCount",
        )

    def get_authorized_relayer(self) -> Optional[EvmAddress]:
        try:
            return EvmAddress(self._call(lambda: self.contract.functions.relayer().call(), "relayer()"))
        except ChainRejectionError:
            return None

    # === Writes ===

    def prepare_submission(self, action: BridgeAction, recipient: EvmAddress, amount: int,
                           nonce: int) -> SignedSubmission:
        fn = getattr(self.contract.functions, action.function_name)(to_checksum_address(recipient), amount)
        tx_params = {
            "from": self.relayer_address,
            "nonce": nonce,
            "chainId": self.chain_id,
        }
        if self.chain.gas_limit:
            tx_params["gas"] = self.chain.gas_limit

        # build_transaction estimates gas, which surfaces reverts before broadcast
        tx = self._call(lambda: fn.build_transaction(tx_params), f"{action.function_name}.build")
        signed = self._account.sign_transaction(tx)
        raw = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction")
        tx_hash = getattr(signed, "hash", None)
        if tx_hash is None:
            tx_hash = Web3.keccak(raw)

        return SignedSubmission(tx_hash=EvmHash(to_hex(tx_hash)), nonce=nonce, raw_transaction=bytes(raw))

    def broadcast(self, signed: SignedSubmission) -> SubmittedTx:
        try:
            self._call(lambda: self.w3.eth.send_raw_transaction(signed.raw_transaction), "eth_sendRawTransaction")
        except TransientInfraError as e:
            # Re-broadcast of an identical signed transaction
            if "already known" not in str(e).lower():
                raise
        self.log_info("Submitted bridge call",
                      chain=self.name,
                      tx_hash=signed.tx_hash,
                      nonce=signed.nonce)
        return SubmittedTx(tx_hash=signed.tx_hash, nonce=signed.nonce)

    # === Internals ===

    def _fetch_receipt(self, tx_hash: EvmHash):
        try:
            return self._call(lambda: self.w3.eth.get_transaction_receipt(tx_hash), "eth_getTransactionReceipt")
        except TransactionNotFound:
            return None

    def _call(self, fn, operation: str):
        try:
            return fn()
        except TransactionNotFound:
            raise
        except ContractLogicError as e:
            raise ChainRejectionError(f"{operation} reverted: {e}", chain=self.name) from e
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout, TimeExhausted) as e:
            raise TransientInfraError(f"{operation} failed: {e}", chain=self.name) from e
        except (ValueError, Web3Exception) as e:
            message = str(e).lower()
            if any(marker in message for marker in INSUFFICIENT_FUNDS_MARKERS):
                raise InsufficientFundsError(f"{operation}: {e}", chain=self.name) from e
            if any(marker in message for marker in NONCE_MARKERS):
                raise TransientInfraError(f"{operation} nonce contention: {e}", chain=self.name) from e
            if "execution reverted" in message or "revert" in message:
                raise ChainRejectionError(f"{operation} reverted: {e}", chain=self.name) from e
            raise TransientInfraError(f"{operation} failed: {e}", chain=self.name) from e
