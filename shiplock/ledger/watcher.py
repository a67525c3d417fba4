from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from shiplock.core.errors import NotFound, ShiplockError

from .contracts import ShipmentContract

log = logging.getLogger("shiplock.ledger")

Callback = Callable[[int], None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class CustodyNotifier(Protocol):
    """Capability: notify when custody of a token is received by its next holder."""

    def subscribe(self, token_id: int, callback: Callback) -> Unsubscribe: ...


class ContractEventNotifier:
    """Push notifier over a contract client exposing on_custody_received()."""

    def __init__(self, contract) -> None:
        if not callable(getattr(contract, "on_custody_received", None)):
            raise TypeError("contract does not support custody-received subscriptions")
        self._contract = contract

    def subscribe(self, token_id: int, callback: Callback) -> Unsubscribe:
        if isinstance(token_id, bool) or int(token_id) < 0:
            raise ValueError(f"invalid token id: {token_id!r}")
        return self._contract.on_custody_received(int(token_id), callback)


class PollingCustodyWatcher:
    """
    Polling notifier: re-reads shipment state and fires on custody changes.

    A change is any movement of (owner, current_route_index, status).
    No thread is started unless run_in_thread() is called.
    """

    def __init__(self, contract: ShipmentContract, *, interval_sec: float = 5.0) -> None:
        self._contract = contract
        self._interval = max(0.05, float(interval_sec))
        self._subs: Dict[int, List[Callback]] = {}
        self._last: Dict[int, Tuple[str, int, int]] = {}
        self._lock = threading.Lock()

    def _snapshot(self, token_id: int) -> Optional[Tuple[str, int, int]]:
        try:
            d = self._contract.shipment_details(token_id)
            owner = self._contract.owner_of(token_id)
        except NotFound:
            return None
        return (owner.lower(), int(d.current_route_index), int(d.status))

    def subscribe(self, token_id: int, callback: Callback) -> Unsubscribe:
        tid = int(token_id)
        baseline = self._snapshot(tid)
        with self._lock:
            self._subs.setdefault(tid, []).append(callback)
            if baseline is not None:
                self._last.setdefault(tid, baseline)

        def _unsubscribe() -> None:
            with self._lock:
                cbs = self._subs.get(tid, [])
                if callback in cbs:
                    cbs.remove(callback)
                if not cbs:
                    self._subs.pop(tid, None)
                    self._last.pop(tid, None)

        return _unsubscribe

    def poll_once(self) -> List[int]:
        """Check every subscribed token once; return the ids that changed."""

        with self._lock:
            tokens = list(self._subs)

        changed: List[int] = []
        for tid in tokens:
            try:
                snap = self._snapshot(tid)
            except ShiplockError as e:
                log.warning("custody_poll_failed", extra={"token_id": tid, "error": repr(e)})
                continue
            if snap is None:
                continue
            with self._lock:
                if tid not in self._subs:
                    continue
                prev = self._last.get(tid)
                self._last[tid] = snap
                callbacks = list(self._subs[tid])
            if prev is not None and prev != snap:
                changed.append(tid)
                for cb in callbacks:
                    self._notify(cb, tid)
        return changed

    def _notify(self, callback: Callback, token_id: int) -> None:
        # Callback failures are logged; remaining subscribers still run.
        try:
            callback(token_id)
        except Exception:
            log.exception("custody_callback_failed", extra={"token_id": token_id})

    def run(self, stop: threading.Event) -> None:
        while not stop.is_set():
            self.poll_once()
            stop.wait(self._interval)

    def run_in_thread(self) -> Tuple[threading.Thread, threading.Event]:
        stop = threading.Event()
        t = threading.Thread(target=self.run, args=(stop,), name="shiplock-custody-poll", daemon=True)
        t.start()
        return t, stop
