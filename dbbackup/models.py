from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Union


@dataclass(frozen=True)
class DatabaseRef:
    """A database reported by the catalog server"""
    name: str

    def __str__(self):
        return self.name


@dataclass(frozen=True)
class DumpJob:
    """One database to export and the artifact name it lands under"""
    database: DatabaseRef
    target_name: str
    compression: str


@dataclass(frozen=True)
class Success:
    """Database dumped and stored"""
    database: str
    artifact_path: str

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    """Database could not be dumped or stored"""
    database: str
    error_message: str
    error_code: Optional[Union[int, str]] = None

    @property
    def ok(self) -> bool:
        return False


DumpResult = Union[Success, Failure]


@dataclass(frozen=True)
class Artifact:
    """Stored object as reported by the backend (timestamp is the backend's mtime)"""
    path: str
    timestamp: datetime
    size: int = 0


@dataclass
class SweepResult:
    """Outcome of one retention sweep"""
    deleted: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    skipped: bool = False


@dataclass
class RunSummary:
    """Ordered per-database results of one run"""
    results: List[DumpResult] = field(default_factory=list)
    started_at: Optional[datetime] = None

    @property
    def successes(self) -> List[Success]:
        return [r for r in self.results if r.ok]

    @property
    def failures(self) -> List[Failure]:
        return [r for r in self.results if not r.ok]

    @property
    def exit_status(self) -> int:
        return 1 if self.failures else 0

    def __repr__(self):
        return f'<RunSummary successes={len(self.successes)} failures={len(self.failures)}>'
