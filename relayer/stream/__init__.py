# relayer/stream/__init__.py

from .log_reader import ChainLogReader, EventBatch
