"""Progress reporting: vertices, statuses and logs sent to a progress writer."""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, BinaryIO, Callable, Protocol, TypeVar

_T = TypeVar("_T")
_CHUNK_SIZE = 32 * 1024


@dataclass
class Vertex:
    """One step of a build as shown in progress output."""

    digest: str
    name: str = ""
    inputs: list[str] = field(default_factory=list)
    cached: bool = False
    started: datetime | None = None
    completed: datetime | None = None
    error: str = ""


@dataclass
class VertexStatus:
    """Progress of a sub-task inside a vertex."""

    id: str
    vertex: str = ""
    name: str = ""
    total: int = 0
    current: int = 0
    timestamp: datetime = field(default_factory=lambda: _now())
    started: datetime | None = None
    completed: datetime | None = None


@dataclass
class VertexLog:
    """A chunk of output written by a vertex to one of its streams."""

    vertex: str
    stream: int
    data: bytes
    timestamp: datetime = field(default_factory=lambda: _now())


@dataclass
class SolveStatus:
    """A batch of progress updates."""

    vertexes: list[Vertex] = field(default_factory=list)
    statuses: list[VertexStatus] = field(default_factory=list)
    logs: list[VertexLog] = field(default_factory=list)


_Logger = Callable[[SolveStatus], None]


class _Writer(Protocol):
    def write(self, status: SolveStatus) -> None: ...

    def validate_log_source(self, digest: str, source: Any) -> bool: ...

    def clear_log_source(self, source: Any) -> None: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_digest() -> str:
    return "sha256:" + hashlib.sha256(uuid.uuid4().hex.encode("ascii")).hexdigest()


class SubLogger:
    """Reports sub-tasks and output belonging to one vertex."""

    def __init__(self, digest: str, logger: _Logger) -> None:
        self.digest = digest
        self._logger = logger

    def wrap(self, name: str, fn: Callable[[], _T]) -> _T:
        """Run ``fn`` reported as a sub-task named ``name``."""
        started = _now()
        self._logger(
            SolveStatus(
                statuses=[
                    VertexStatus(id=name, vertex=self.digest, timestamp=_now(), started=started)
                ]
            )
        )
        try:
            return fn()
        finally:
            completed = _now()
            self._logger(
                SolveStatus(
                    statuses=[
                        VertexStatus(
                            id=name,
                            vertex=self.digest,
                            timestamp=_now(),
                            started=started,
                            completed=completed,
                        )
                    ]
                )
            )

    def log(self, stream: int, data: bytes) -> None:
        """Report output written to ``stream`` (1 for stdout, 2 for stderr)."""
        self._logger(
            SolveStatus(
                logs=[VertexLog(vertex=self.digest, stream=stream, data=data, timestamp=_now())]
            )
        )

    def set_status(self, status: VertexStatus) -> None:
        """Report a sub-task status against this vertex."""
        status.vertex = self.digest
        self._logger(SolveStatus(statuses=[status]))


def wrap(name: str, logger: _Logger, fn: Callable[[SubLogger], _T]) -> _T:
    """Run ``fn`` as a vertex named ``name``, reporting its start and completion."""
    digest = _new_digest()
    started = _now()
    logger(SolveStatus(vertexes=[Vertex(digest=digest, name=name, started=started)]))
    error = ""
    try:
        return fn(SubLogger(digest, logger))
    except BaseException as exc:
        error = str(exc)
        raise
    finally:
        logger(
            SolveStatus(
                vertexes=[
                    Vertex(
                        digest=digest,
                        name=name,
                        started=started,
                        completed=_now(),
                        error=error,
                    )
                ]
            )
        )


def write(writer: _Writer, name: str, fn: Callable[[], Any]) -> Exception | None:
    """Run ``fn`` as a vertex; a failure is recorded on the vertex and returned."""
    digest = _new_digest()
    started = _now()
    writer.write(SolveStatus(vertexes=[Vertex(digest=digest, name=name, started=started)]))
    failure: Exception | None = None
    try:
        fn()
    except Exception as exc:
        failure = exc
    writer.write(
        SolveStatus(
            vertexes=[
                Vertex(
                    digest=digest,
                    name=name,
                    started=started,
                    completed=_now(),
                    error="" if failure is None else str(failure),
                )
            ]
        )
    )
    return failure


def from_reader(writer: _Writer, name: str, reader: BinaryIO) -> None:
    """Report a vertex that lasts until ``reader`` is drained; read errors are recorded."""
    digest = _new_digest()
    started = _now()
    writer.write(SolveStatus(vertexes=[Vertex(digest=digest, name=name, started=started)]))
    error = ""
    try:
        while reader.read(_CHUNK_SIZE):
            pass
    except OSError as exc:
        error = str(exc)
    writer.write(
        SolveStatus(
            vertexes=[
                Vertex(digest=digest, name=name, started=started, completed=_now(), error=error)
            ]
        )
    )


def _add_prefix(prefix: str, name: str) -> str:
    if name.startswith("["):
        return f"[{prefix} {name[1:]}"
    return f"[{prefix}] {name}"


class PrefixedWriter:
    """Writer that tags vertex names with a prefix when forced to."""

    def __init__(self, writer: _Writer, prefix: str, force: bool) -> None:
        self.writer = writer
        self.prefix = prefix
        self.force = force

    def write(self, status: SolveStatus) -> None:
        if self.force:
            for vertex in status.vertexes:
                vertex.name = _add_prefix(self.prefix, vertex.name)
        self.writer.write(status)

    def validate_log_source(self, digest: str, source: Any) -> bool:
        return self.writer.validate_log_source(digest, source)

    def clear_log_source(self, source: Any) -> None:
        self.writer.clear_log_source(source)


def with_prefix(writer: _Writer, prefix: str, force: bool) -> PrefixedWriter:
    """Wrap ``writer`` so that vertex names carry ``prefix`` when ``force`` is set."""
    return PrefixedWriter(writer, prefix, force)


class ResetTimeWriter:
    """Writer that shifts all times so the first started vertex begins now."""

    def __init__(self, writer: _Writer) -> None:
        self.writer = writer
        self._origin = _now()
        self._diff: timedelta | None = None

    def write(self, status: SolveStatus) -> None:
        if self._diff is None:
            for vertex in status.vertexes:
                if vertex.started is not None:
                    self._diff = vertex.started - self._origin
        diff = self._diff
        if diff is not None:
            for vertex in status.vertexes:
                if vertex.started is not None:
                    vertex.started -= diff
                if vertex.completed is not None:
                    vertex.completed -= diff
            for st in status.statuses:
                if st.started is not None:
                    st.started -= diff
                if st.completed is not None:
                    st.completed -= diff
                st.timestamp -= diff
            for log in status.logs:
                log.timestamp -= diff
        self.writer.write(status)

    def validate_log_source(self, digest: str, source: Any) -> bool:
        return self.writer.validate_log_source(digest, source)

    def clear_log_source(self, source: Any) -> None:
        self.writer.clear_log_source(source)


def reset_time(writer: _Writer) -> ResetTimeWriter:
    """Wrap ``writer`` so that reported times start from the moment of wrapping."""
    return ResetTimeWriter(writer)