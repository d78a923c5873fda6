# relayer/types/new.py

from typing import NewType


EvmAddress = NewType('EvmAddress', str)
EvmHash = NewType('EvmHash', str)
TransferId = NewType('TransferId', str)
EventKey = NewType('EventKey', str)
