"""
Core logic for micopy package.
"""

from __future__ import annotations

import os
import shutil
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import timedelta
from itertools import islice
from pathlib import Path
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

import pathspec

# Exceptions
class MicopyError(Exception): ...
class ConfigurationError(MicopyError): ...
class ConfigFileError(ConfigurationError): ...


class PathNotFoundError(MicopyError):
    """Raised when a source root is missing or a subtree cannot be read."""

    def __init__(self, path: Union[str, Path], message: str) -> None:
        super().__init__(message)
        self.path = Path(path)


class CopyError(MicopyError):
    """Raised when a single file of the plan fails to copy."""

    def __init__(self, item: "FileWorkItem", cause: OSError) -> None:
        super().__init__(
            f"Could not copy '{item.source_path}' to '{item.destination_folder}': {cause}"
        )
        self.item = item
        self.cause = cause
        # filled in by execute_plan once the run has stopped
        self.completed: Optional[int] = None
        self.total: Optional[int] = None

    @property
    def source(self) -> Path:
        return self.item.source_path

    @property
    def destination(self) -> Path:
        return self.item.destination_path


# Defaults
DEFAULT_INCLUDE = "**/*"
DEFAULT_PARALLELISM = 8

PathLike = Union[str, Path]


# Data model
@dataclass(frozen=True)
class FolderConfiguration:
    source: str
    destination: str
    ignore_pattern_name: Optional[str] = None


@dataclass(frozen=True)
class IgnorePatternConfiguration:
    name: str
    patterns: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "patterns", tuple(self.patterns))


@dataclass(frozen=True)
class MicopyConfiguration:
    """Validated input for a configured copy run."""

    folders: Tuple[FolderConfiguration, ...]
    ignore_patterns: Tuple[IgnorePatternConfiguration, ...] = ()
    parallelism: Optional[int] = None


@dataclass(frozen=True)
class FileWorkItem:
    file_name: str
    source_folder: Path
    destination_folder: Path

    @property
    def source_path(self) -> Path:
        return self.source_folder / self.file_name

    @property
    def destination_path(self) -> Path:
        return self.destination_folder / self.file_name


@dataclass(frozen=True)
class CopyPlan:
    items: Tuple[FileWorkItem, ...] = ()

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[FileWorkItem]:
        return iter(self.items)


@dataclass
class ProgressState:
    """Completed/total counters shared by the copy workers."""

    total: int
    completed: int = 0
    _lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    def advance(self, reporter: Any = None) -> int:
        # increment and report form one critical section so the bar never goes backwards
        with self._lock:
            self.completed += 1
            if reporter is not None:
                reporter.update(self.completed, self.total)
            return self.completed


# Glob filter
class GlobFilter:
    """
    Include/exclude matcher over paths relative to a source root.

    Every pattern is anchored at the source root: ``*`` stays inside one path
    segment and only ``**`` spans segments, so ``*.tmp`` matches top-level
    files alone while ``**/*.tmp`` matches at any depth. A pattern that matches
    a directory also covers everything below it. Each exclude pattern is
    compiled on its own; a path is kept when it matches the include pattern
    and none of the exclude patterns.
    """

    def __init__(self, include: str = DEFAULT_INCLUDE, excludes: Iterable[str] = ()) -> None:
        self.include = include
        self.excludes: Tuple[str, ...] = tuple(excludes)
        self._include_spec = _compile_pattern(include)
        # blank lines and "#" comments are no-ops, as in ignore files
        self._exclude_specs = [
            _compile_pattern(pattern)
            for pattern in self.excludes
            if pattern.strip() and not pattern.startswith("#")
        ]

    def matches(self, rel_path: PathLike) -> bool:
        rel = _as_posix(rel_path)
        if not self._include_spec.match_file(rel):
            return False
        return not any(spec.match_file(rel) for spec in self._exclude_specs)

    __call__ = matches

    def __repr__(self) -> str:
        return f"GlobFilter(include={self.include!r}, excludes={self.excludes!r})"


def _compile_pattern(pattern: str) -> "pathspec.PathSpec":
    if pattern.startswith("!"):
        raise ConfigurationError(
            f"Negated pattern '{pattern}' is not supported; exclude patterns cannot re-include files"
        )
    if not pattern.startswith(("/", "**/")):
        pattern = "/" + pattern
    return pathspec.PathSpec.from_lines("gitignore", [pattern])


def _as_posix(rel_path: PathLike) -> str:
    if isinstance(rel_path, Path):
        return rel_path.as_posix()
    return rel_path.replace(os.sep, "/")


IgnorePatterns = Union[
    Mapping[str, IgnorePatternConfiguration],
    Sequence[IgnorePatternConfiguration],
]


def _index_ignore_patterns(
    ignore_patterns: Optional[IgnorePatterns],
) -> Dict[str, IgnorePatternConfiguration]:
    if not ignore_patterns:
        return {}
    configs = (
        ignore_patterns.values()
        if isinstance(ignore_patterns, Mapping)
        else ignore_patterns
    )
    index: Dict[str, IgnorePatternConfiguration] = {}
    for cfg in configs:
        key = cfg.name.casefold()
        if key in index:
            raise ConfigurationError(f"Duplicate ignore pattern set '{cfg.name}'")
        index[key] = cfg
    return index


def resolve_ignore_patterns(
    name: Optional[str],
    ignore_patterns: Optional[IgnorePatterns],
) -> Optional[IgnorePatternConfiguration]:
    """Look up an ignore pattern set by name, ignoring case."""
    if not name:
        return None
    found = _index_ignore_patterns(ignore_patterns).get(name.casefold())
    if found is None:
        raise ConfigurationError(f"Unknown ignore pattern set '{name}'")
    return found


def build_filter(
    folder: FolderConfiguration,
    ignore_patterns: Optional[IgnorePatterns] = None,
) -> GlobFilter:
    cfg = resolve_ignore_patterns(folder.ignore_pattern_name, ignore_patterns)
    return GlobFilter(excludes=cfg.patterns if cfg else ())


# Tree enumeration
def _raise_walk_error(err: OSError) -> None:
    raise err


def scan_files(
    source: PathLike,
    destination: PathLike,
    glob_filter: Optional[GlobFilter] = None,
) -> List[FileWorkItem]:
    """Recursively collect every file under *source* that passes *glob_filter*."""
    try:
        root = Path(source).expanduser().resolve()
    except (OSError, RuntimeError) as e:
        raise PathNotFoundError(source, f"Could not resolve source path '{source}': {e}")

    if not root.exists():
        raise PathNotFoundError(root, f"Source directory '{root}' does not exist")

    if not root.is_dir():
        raise PathNotFoundError(root, f"Source path '{root}' is not a directory")

    dest_root = Path(destination).expanduser().resolve()
    glob_filter = glob_filter or GlobFilter()

    items: List[FileWorkItem] = []
    try:
        for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_walk_error):
            dirnames.sort()
            rel_dir = Path(dirpath).relative_to(root)
            for name in sorted(filenames):
                if not glob_filter.matches(rel_dir / name):
                    continue
                items.append(FileWorkItem(name, root / rel_dir, dest_root / rel_dir))
    except OSError as e:
        failed = e.filename or root
        raise PathNotFoundError(failed, f"Could not scan directory '{failed}': {e}") from e

    return items


# Plan building
def build_plan(
    folders: Iterable[FolderConfiguration],
    ignore_patterns: Optional[IgnorePatterns] = None,
) -> CopyPlan:
    """
    Enumerate every configured folder into one CopyPlan.

    All ignore pattern names are resolved before the first directory is
    scanned. Any error aborts the whole build.
    """
    index = _index_ignore_patterns(ignore_patterns)
    filtered = [(folder, build_filter(folder, index)) for folder in folders]

    items: List[FileWorkItem] = []
    for folder, glob_filter in filtered:
        items.extend(scan_files(folder.source, folder.destination, glob_filter))
    return CopyPlan(tuple(items))


# Copy execution
def resolve_parallelism(parallelism: Optional[int]) -> int:
    if parallelism is None:
        return DEFAULT_PARALLELISM
    if parallelism < 0:
        raise ValueError(f"Parallelism must be 0 or greater, got {parallelism}")
    return parallelism


def copy_file(item: FileWorkItem) -> Path:
    """Copy one work item, creating its destination folder when needed."""
    try:
        item.destination_folder.mkdir(parents=True, exist_ok=True)
        return Path(shutil.copy2(item.source_path, item.destination_path))
    except OSError as e:
        raise CopyError(item, e) from e


def _copy_sequential(plan: CopyPlan, state: ProgressState, reporter: Any) -> None:
    for item in plan:
        copy_file(item)
        state.advance(reporter)


def _copy_pooled(
    plan: CopyPlan, workers: int, state: ProgressState, reporter: Any
) -> None:
    def _work(item: FileWorkItem) -> None:
        copy_file(item)
        state.advance(reporter)

    pending = iter(plan)
    failure: Optional[BaseException] = None
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="micopy") as pool:
        in_flight: Set[Future] = {pool.submit(_work, item) for item in islice(pending, workers)}
        while in_flight:
            done, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
            for future in done:
                if failure is None and future.exception() is not None:
                    failure = future.exception()
            # stop feeding the pool after the first failure
            if failure is None:
                for item in islice(pending, len(done)):
                    in_flight.add(pool.submit(_work, item))

    if failure is not None:
        raise failure


def execute_plan(
    plan: CopyPlan,
    parallelism: Optional[int] = None,
    reporter: Any = None,
) -> int:
    """
    Copy every item of *plan* and return the number of files copied.

    ``parallelism`` of 0 copies inline in plan order, ``None`` uses
    DEFAULT_PARALLELISM workers and any positive value bounds the number of
    concurrent copies. The first CopyError stops the run.
    """
    workers = resolve_parallelism(parallelism)
    state = ProgressState(total=len(plan))
    started = time.perf_counter()

    try:
        if workers == 0:
            _copy_sequential(plan, state, reporter)
        else:
            _copy_pooled(plan, workers, state, reporter)
    except CopyError as e:
        e.completed, e.total = state.completed, state.total
        raise

    if reporter is not None:
        reporter.finish(state.total, timedelta(seconds=time.perf_counter() - started))
    return state.completed


# Entry points
def copy_directory(
    source: PathLike,
    destination: PathLike,
    parallelism: Optional[int] = None,
    reporter: Any = None,
    excludes: Iterable[str] = (),
) -> int:
    """Mirror a whole directory tree into *destination*."""
    plan = CopyPlan(tuple(scan_files(source, destination, GlobFilter(excludes=excludes))))
    return execute_plan(plan, parallelism, reporter)


def copy_folders(configuration: MicopyConfiguration, reporter: Any = None) -> int:
    plan = build_plan(configuration.folders, configuration.ignore_patterns)
    return execute_plan(plan, configuration.parallelism, reporter)
