# relayer/decode/log_decoder.py

from typing import Any, Dict, List, Optional

from eth_utils import to_checksum_address
from hexbytes import HexBytes
from web3 import Web3
from web3._utils.events import get_event_data

from ..clients.abi import BRIDGE_ABI, event_topic
from ..core.logging import LoggingMixin
from ..types import ChainEvent, EventKind, EvmAddress, EvmHash


def to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray, HexBytes)):
        return "0x" + bytes(value).hex()
    value = str(value)
    return value.lower() if value.startswith("0x") else f"0x{value.lower()}"


class BridgeLogDecoder(LoggingMixin):
    """Decodes raw bridge logs of one event kind into ChainEvents."""

    def __init__(self, kind: EventKind, source_chain_id: int, dest_chain_id: int):
        self.kind = kind
        self.source_chain_id = source_chain_id
        self.dest_chain_id = dest_chain_id
        self.w3 = Web3()
        self.event_abi = next(
            abi for abi in BRIDGE_ABI
            if abi["type"] == "event" and abi["name"] == kind.abi_name
        )
        self.topic = event_topic(kind.abi_name).lower()

    def decode_many(self, logs: List[Dict[str, Any]]) -> List[ChainEvent]:
        events = []
        for log in logs:
            event = self.decode(log)
            if event is not None:
                events.append(event)
        events.sort(key=lambda e: (e.block_number, e.log_index))
        return events

    def decode(self, log: Dict[str, Any]) -> Optional[ChainEvent]:
        log_index = int(log.get("logIndex", -1))

        if log.get("removed"):
            self.log_warning("Skipping log removed by reorganization",
                             tx_hash=to_hex(log.get("transactionHash", b"")),
                             log_index=log_index)
            return None

        topics = log.get("topics") or []
        if not topics or to_hex(topics[0]) != self.topic:
            return None

        try:
            event_data = get_event_data(self.w3.codec, self.event_abi, log)
        except Exception as e:
            self.log_warning("Log does not match bridge event ABI",
                             tx_hash=to_hex(log.get("transactionHash", b"")),
                             log_index=log_index,
                             error=str(e))
            return None

        args = event_data["args"]
        try:
            return ChainEvent(
                kind=self.kind,
                user=EvmAddress(to_checksum_address(args["user"])),
                amount=int(args["amount"]),
                destination=EvmAddress(to_checksum_address(args["destination"])),
                source_chain_id=self.source_chain_id,
                dest_chain_id=self.dest_chain_id,
                block_number=int(event_data["blockNumber"]),
                tx_hash=EvmHash(to_hex(event_data["transactionHash"])),
                log_index=int(event_data["logIndex"]),
            )
        except ValueError as e:
            # Zero or out-of-range amounts can never be relayed
            self.log_warning("Rejecting non-relayable bridge event",
                             tx_hash=to_hex(event_data["transactionHash"]),
                             block_number=event_data["blockNumber"],
                             log_index=log_index,
                             error=str(e))
            return None
