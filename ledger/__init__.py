"""
In-process ledger for the voting protocol: accumulators, registry, polls,
and the message-processing and tally verifiers.
"""

from .acc_queue import AccQueue
from .chain import (
    ZERO_ADDRESS,
    DeployPollEvent,
    Ledger,
    ManualClock,
    MessagePublishedEvent,
    SignUpEvent,
    SystemClock,
)
from .errors import (
    LedgerError,
    AccessControlError,
    PhaseViolationError,
    InputValidationError,
    ZeroDurationError,
    ZeroTreeDepthError,
    ZeroAddressError,
    InvalidPublicKeyError,
    ZeroBatchCountError,
    FieldRangeError,
    IntegrityViolationError,
)
from .poll import Poll, PollPhase
from .processor import MessageProcessor, Tally, TallyResult
from .registry import ConstantVoiceCreditProxy, FreeForAllGatekeeper, Registry, VerifierRefs
from .vk_registry import CircuitParams, VkRegistry

__all__ = [
    'AccQueue',
    'ZERO_ADDRESS',
    'DeployPollEvent',
    'Ledger',
    'ManualClock',
    'MessagePublishedEvent',
    'SignUpEvent',
    'SystemClock',
    'LedgerError',
    'AccessControlError',
    'PhaseViolationError',
    'InputValidationError',
    'ZeroDurationError',
    'ZeroTreeDepthError',
    'ZeroAddressError',
    'InvalidPublicKeyError',
    'ZeroBatchCountError',
    'FieldRangeError',
    'IntegrityViolationError',
    'Poll',
    'PollPhase',
    'MessageProcessor',
    'Tally',
    'TallyResult',
    'ConstantVoiceCreditProxy',
    'FreeForAllGatekeeper',
    'Registry',
    'VerifierRefs',
    'CircuitParams',
    'VkRegistry',
]
