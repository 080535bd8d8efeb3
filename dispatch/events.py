from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Protocol, List, Optional

@dataclass(frozen=True)
class DispatchEvent:
    campaign_id: str
    phone: str
    status: str = "sent"    # "sent" | "failed" | "skipped"
    message_id: Optional[str] = None
    error: Optional[str] = None

class Observer(Protocol):
    def update(self, event: DispatchEvent) -> None: ...

class Subject:
    def __init__(self) -> None:
        self._observers: List[Observer] = []

    def attach(self, obs: Observer) -> None:
        if obs not in self._observers:
            self._observers.append(obs)

    def detach(self, obs: Observer) -> None:
        if obs in self._observers:
            self._observers.remove(obs)

    def notify(self, event: DispatchEvent) -> None:
        # one broken observer must not stop the others (or the campaign)
        for obs in list(self._observers):
            try:
                obs.update(event)
            except Exception:
                logging.exception("[observers] %s failed on %s", type(obs).__name__, event.status)
