"""
Shared runtime state for Airseeker.

The state is an immutable snapshot held by a :class:`StateStore`. Writers
never mutate it; they pass an updater that derives a new snapshot from the
current one, and the store swaps the whole snapshot under a lock. Writers must
copy-then-patch so that keys they did not intend to change survive
interleaved updates.
"""

import asyncio
import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from eth_account.signers.local import LocalAccount

from .config import AirseekerConfig
from .models import SignedData

if TYPE_CHECKING:
    from .providers import Provider

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class State:
    """Process-wide runtime snapshot.

    Attributes:
        config: Validated configuration
        stop_signal_received: Set once when shutdown starts, never reset
        beacon_values: Latest signed data by beacon ID
        providers: RPC providers by chain ID
        sponsor_wallets: Derived sponsor wallets by sponsor address
    """

    config: AirseekerConfig
    stop_signal_received: bool = False
    beacon_values: dict[str, SignedData] = field(default_factory=dict)
    providers: dict[str, list["Provider"]] = field(default_factory=dict)
    sponsor_wallets: dict[str, LocalAccount] = field(default_factory=dict)


StateUpdater = Callable[[State], State]


class StateStore:
    """Guarded container for the runtime :class:`State`.

    Passed to every task at creation. Reads return the current snapshot;
    :meth:`update` atomically replaces it.
    """

    def __init__(self, config: AirseekerConfig) -> None:
        self._state = State(config=config)
        self._lock = threading.Lock()
        self._stop_event: asyncio.Event | None = None

    def get(self) -> State:
        """Return the current snapshot."""
        return self._state

    def update(self, updater: StateUpdater) -> State:
        """Replace the snapshot with ``updater(current)`` as one atomic step.

        Returns:
            The new snapshot
        """
        with self._lock:
            new_state = updater(self._state)
            if self._state.stop_signal_received and not new_state.stop_signal_received:
                raise ValueError("Stop signal cannot be reset")
            self._state = new_state
            return new_state

    def set_beacon_value(self, beacon_id: str, signed_data: SignedData) -> State:
        """Merge one beacon value into the cached values."""
        return self.update(
            lambda state: dataclasses.replace(
                state, beacon_values={**state.beacon_values, beacon_id: signed_data}
            )
        )

    def set_providers(self, providers: dict[str, list["Provider"]]) -> State:
        return self.update(lambda state: dataclasses.replace(state, providers=dict(providers)))

    def set_sponsor_wallet(self, sponsor_address: str, wallet: LocalAccount) -> State:
        """Merge one derived sponsor wallet into the wallet cache."""
        return self.update(
            lambda state: dataclasses.replace(
                state, sponsor_wallets={**state.sponsor_wallets, sponsor_address: wallet}
            )
        )

    @property
    def stop_event(self) -> asyncio.Event:
        """Event set together with the stop flag, for waking sleeping loops."""
        if self._stop_event is None:
            self._stop_event = asyncio.Event()
            if self._state.stop_signal_received:
                self._stop_event.set()
        return self._stop_event

    @property
    def stopped(self) -> bool:
        return self._state.stop_signal_received

    def stop(self) -> None:
        """Set the stop flag. Subsequent calls are no-ops."""
        if self._state.stop_signal_received:
            return
        self.update(lambda state: dataclasses.replace(state, stop_signal_received=True))
        logger.info("Stop signal received, letting in-flight cycles finish")
        if self._stop_event is not None:
            self._stop_event.set()
