from __future__ import annotations

import datetime as _dt
from typing import Dict, Optional

from .schemas import as_utc, utc_now


class DedupLedger:
    """Already-emitted event keys mapped to the event's timestamp.

    ``is_new_event`` is the single gate in front of the event sink: a key is
    accepted once for the lifetime of the persisted ledger (minus pruning).
    """

    def __init__(self, seen: Optional[Dict[str, _dt.datetime]] = None) -> None:
        self._seen: Dict[str, _dt.datetime] = dict(seen or {})

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, key: str) -> bool:
        return key in self._seen

    def get(self, key: str) -> Optional[_dt.datetime]:
        return self._seen.get(key)

    def is_new_event(self, key: str, timestamp: _dt.datetime) -> bool:
        if key in self._seen:
            return False
        self._seen[key] = as_utc(timestamp)
        return True

    def prune(self, retention: _dt.timedelta, now: Optional[_dt.datetime] = None) -> int:
        threshold = (as_utc(now) if now is not None else utc_now()) - retention
        stale = [k for k, ts in list(self._seen.items()) if ts < threshold]
        for k in stale:
            del self._seen[k]
        return len(stale)

    def snapshot(self) -> Dict[str, _dt.datetime]:
        return dict(self._seen)
