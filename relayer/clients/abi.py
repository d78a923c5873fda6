# relayer/clients/abi.py

from web3 import Web3


def _event(name: str) -> dict:
    return {
        "anonymous": False,
        "type": "event",
        "name": name,
        "inputs": [
            {"indexed": True, "name": "user", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
            {"indexed": False, "name": "destination", "type": "address"},
        ],
    }


def _relayer_call(name: str) -> dict:
    return {
        "type": "function",
        "name": name,
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [],
    }


RELAYER_VIEW = {
    "type": "function",
    "name": "relayer",
    "stateMutability": "view",
    "inputs": [],
    "outputs": [{"name": "", "type": "address"}],
}

# Both bridge contracts: lock()/burn() emit the events, release()/mintWrapped() are relayer-gated
BRIDGE_ABI = [
    _event("TokenLocked"),
    _event("TokenBurned"),
    _relayer_call("release"),
    _relayer_call("mintWrapped"),
    RELAYER_VIEW,
]

EVENT_SIGNATURES = {
    "TokenLocked": "TokenLocked(address,uint256,address)",
    "TokenBurned": "TokenBurned(address,uint256,address)",
}


def event_topic(event_name: str) -> str:
    topic = Web3.keccak(text=EVENT_SIGNATURES[event_name]).hex()
    return topic if topic.startswith("0x") else f"0x{topic}"
