# relayer/clients/registry.py

from typing import Dict, List

from .interfaces import ChainClientInterface


class ChainClients:
    """The two bridge-contract clients, addressable by chain id."""

    def __init__(self, source: ChainClientInterface, destination: ChainClientInterface):
        if source.chain_id == destination.chain_id:
            raise ValueError("Source and destination clients must target different chains")
        self.source = source
        self.destination = destination
        self._by_chain: Dict[int, ChainClientInterface] = {
            source.chain_id: source,
            destination.chain_id: destination,
        }

    def for_chain(self, chain_id: int) -> ChainClientInterface:
        try:
            return self._by_chain[chain_id]
        except KeyError:
            raise KeyError(f"No client for chain {chain_id}") from None

    def all(self) -> List[ChainClientInterface]:
        return [self.source, self.destination]
