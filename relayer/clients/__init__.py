# relayer/clients/__init__.py

from .interfaces import ChainClientInterface
from .registry import ChainClients
