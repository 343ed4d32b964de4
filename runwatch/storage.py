from __future__ import annotations

import datetime as _dt
import logging
import tempfile
from pathlib import Path
from typing import Optional

import orjson
from pydantic import ValidationError

from .ledger import DedupLedger
from .schemas import MonitorState, iso_z
from .settings import settings

log = logging.getLogger(__name__)


class StateStore:
    """Reads and writes the monitor checkpoint for one repository."""

    def __init__(
        self,
        owner: str,
        repo: str,
        base_dir: Optional[Path] = None,
        retention: Optional[_dt.timedelta] = None,
    ) -> None:
        self._dir = Path(base_dir) if base_dir is not None else settings.state_dir()
        self.path = self._dir / f"{owner}-{repo}-workflow-state.json"
        if retention is None:
            retention = _dt.timedelta(days=int(settings.monitor.get("retention_days", 7)))
        self.retention = retention

    def load(self) -> MonitorState:
        if not self.path.exists():
            return MonitorState()
        try:
            return MonitorState.model_validate(orjson.loads(self.path.read_bytes()))
        except (OSError, orjson.JSONDecodeError, ValidationError) as e:
            log.error("Cannot load state file %s: %s", self.path, e)
            return MonitorState()

    def save(self, watermark: _dt.datetime, ledger: DedupLedger) -> bool:
        removed = ledger.prune(self.retention)
        if removed:
            log.debug("Pruned %d ledger entries older than %s", removed, self.retention)
        payload = {
            "last_run_time": iso_z(watermark),
            "already_seen_keys": {k: iso_z(ts) for k, ts in ledger.snapshot().items()},
        }
        data = orjson.dumps(payload, option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS)
        tmp: Optional[Path] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=self.path.parent, prefix=self.path.name, suffix=".tmp", delete=False
            ) as f:
                tmp = Path(f.name)
                f.write(data)
            tmp.replace(self.path)
        except OSError as e:
            log.error("Save error for %s: %s", self.path, e)
            if tmp is not None:
                tmp.unlink(missing_ok=True)
            return False
        return True
