from __future__ import annotations

import sys
from pathlib import Path
from typing import IO, Iterable, List, Optional, Protocol

import orjson

from .schemas import WorkflowEvent, iso_z

_ROW = "{:<24} | {:<5} | {:<14} | {:<10} | {:<8} | {}"


class EventSink(Protocol):
    def write(self, event: WorkflowEvent) -> None: ...


def _cell(value: Optional[str]) -> str:
    return "null" if value is None else value


class ConsoleSink:
    """Fixed-width table on stdout, header printed before the first row."""

    def __init__(self, stream: Optional[IO[str]] = None) -> None:
        self._stream = stream
        self._header_printed = False

    @property
    def stream(self) -> IO[str]:
        return self._stream if self._stream is not None else sys.stdout

    def header(self) -> str:
        title = _ROW.format("Date Time", "Level", "Status", "Branch", "SHA", "Name")
        rule = "-+-".join("-" * w for w in (24, 5, 14, 10, 8, 30))
        return f"{title}\n{rule}"

    def format(self, event: WorkflowEvent) -> str:
        return _ROW.format(
            iso_z(event.time),
            event.level.value,
            event.status.value,
            _cell(event.branch),
            _cell(event.short_sha),
            _cell(event.name),
        )

    def write(self, event: WorkflowEvent) -> None:
        if not self._header_printed:
            print(self.header(), file=self.stream, flush=True)
            self._header_printed = True
        print(self.format(event), file=self.stream, flush=True)


class JsonlSink:
    """Appends every emitted event to a JSON-lines journal."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def write(self, event: WorkflowEvent) -> None:
        record = {
            "key": event.key,
            "time": iso_z(event.time),
            "level": event.level.value,
            "status": event.status.value,
            "branch": event.branch,
            "sha": event.short_sha,
            "name": event.name,
        }
        line = orjson.dumps(record, option=orjson.OPT_SORT_KEYS)
        with open(self.path, "ab") as f:
            f.write(line + b"\n")


class FanoutSink:
    def __init__(self, sinks: Iterable[EventSink]) -> None:
        self.sinks: List[EventSink] = list(sinks)

    def write(self, event: WorkflowEvent) -> None:
        for sink in self.sinks:
            sink.write(event)
