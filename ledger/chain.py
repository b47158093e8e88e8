"""
In-process ledger: clock, deterministic addresses and the event log.

Ledger objects (registry, polls, processors, tallies) are plain Python
objects registered here under an address. Every state-changing call runs on
the single event-loop thread, so guards are booleans and cursors.
"""

import hashlib
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from primitives.keys import PublicKey

from .errors import PhaseViolationError, ZeroAddressError

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "00" * 20

E = TypeVar("E")


# ============================================================================
# CLOCKS
# ============================================================================


class SystemClock:
    """Wall-clock seconds"""

    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Clock advanced explicitly, for tests and simulations"""

    def __init__(self, start: int = 1_700_000_000):
        self._now = int(start)

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("Clock cannot move backwards")
        self._now += int(seconds)
        return self._now


# ============================================================================
# EVENTS
# ============================================================================


@dataclass(frozen=True)
class SignUpEvent:
    state_index: int
    pub_key: PublicKey
    voice_credit_balance: int
    timestamp: int


@dataclass(frozen=True)
class DeployPollEvent:
    poll_id: int
    poll_address: str
    processor_address: str
    tally_address: str


@dataclass(frozen=True)
class MessagePublishedEvent:
    poll_address: str
    index: int
    data: Tuple[int, ...]
    enc_pub_key: PublicKey


# ============================================================================
# LEDGER
# ============================================================================


def require_address(address: str, name: str = "address") -> str:
    if not address or address == ZERO_ADDRESS:
        raise ZeroAddressError(f"{name} must not be the zero address")
    return address


class Ledger:
    """Clock, address book and append-only event log"""

    def __init__(self, clock=None):
        self.clock = clock or SystemClock()
        self.events: List[Any] = []
        self.contracts: Dict[str, Any] = {}
        self._address_nonce = 0

    def now(self) -> int:
        return self.clock.now()

    def new_address(self, label: str) -> str:
        self._address_nonce += 1
        digest = hashlib.sha256(f"{label}:{self._address_nonce}".encode()).digest()
        return "0x" + digest[-20:].hex()

    def deploy(self, label: str, contract: Any) -> str:
        address = self.new_address(label)
        self.register(address, contract)
        logger.debug(f"Deployed {label} at {address}")
        return address

    def register(self, address: str, contract: Any):
        if address in self.contracts:
            raise ValueError(f"Address {address} is already in use")
        self.contracts[address] = contract

    def at(self, address: str) -> Any:
        try:
            return self.contracts[address]
        except KeyError:
            raise LookupError(f"No contract at {address}") from None

    def emit(self, event: Any):
        self.events.append(event)

    def get_events(self, event_type: Type[E], **filters) -> List[E]:
        return [
            event for event in self.events
            if isinstance(event, event_type)
            and all(getattr(event, key) == value for key, value in filters.items())
        ]


class ReentrancyGuard:
    """Rejects a nested call into a guarded operation"""

    def __init__(self, name: str):
        self.name = name
        self._entered = False

    @contextmanager
    def enter(self, operation: Optional[str] = None):
        if self._entered:
            raise PhaseViolationError(f"Re-entrant call into {operation or self.name}")
        self._entered = True
        try:
            yield
        finally:
            self._entered = False
