# relayer/transform/__init__.py

from .state_machine import TransferStateMachine
