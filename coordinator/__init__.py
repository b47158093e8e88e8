"""
Off-ledger coordinator: message replay, tally, proof submission and
operator tooling (diagnostics, deployment descriptor checks).
"""

from .descriptor import DeploymentDescriptor, DescriptorCheck, check_coordinator_key
from .diagnose import PollDiagnosis, diagnose_poll, format_diagnosis
from .errors import CoordinatorError, ProcessingError, StaleDescriptorError
from .pipeline import Coordinator, fetch_messages, fetch_state_leaves
from .processing import MessageReplay, MessageStatus, PollState, vote_cost
from .tally import TallyBuilder

__all__ = [
    'Coordinator',
    'MessageReplay',
    'MessageStatus',
    'PollState',
    'TallyBuilder',
    'vote_cost',
    'fetch_messages',
    'fetch_state_leaves',
    'DeploymentDescriptor',
    'DescriptorCheck',
    'check_coordinator_key',
    'PollDiagnosis',
    'diagnose_poll',
    'format_diagnosis',
    'CoordinatorError',
    'ProcessingError',
    'StaleDescriptorError',
]
