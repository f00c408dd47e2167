"""
Core bundle assembly for srcpack.

Patterns are normalized into include / exclude / force sets, expanded against
the working directory with ``.gitignore`` awareness, filtered for binary
content and rendered into one text bundle with an optional line index.
"""

from __future__ import annotations

import glob
import os
import re
import sys
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple, Union

import pathspec
from colorama import Fore, Style

# Exceptions
class SrcpackError(Exception): ...
class InvalidRootError(SrcpackError): ...
class FileReadError(SrcpackError): ...
class OutputError(SrcpackError): ...

# Defaults & helpers
GITIGNORE_NAME = ".gitignore"

# Same prefix size git inspects before calling a file binary
BINARY_CHECK_SIZE = 8192

_SIMPLE_DIR_NAME = re.compile(r"^[\w.-]+$")


def echo(msg: str, color: str = "", file=None) -> None:
    """Print a ``[srcpack]`` status line, colored when *color* is given."""
    line = f"[srcpack] {msg}"
    if color:
        line = color + line + Style.RESET_ALL
    print(line, file=file or sys.stdout)


def expand_path(p: str) -> str:
    """Expand a leading ``~/`` to the user's home directory."""
    if p.startswith("~/"):
        return str(Path.home() / p[2:])
    return p


# Bundle configuration
@dataclass
class BundleSpec:
    """Structured bundle configuration (the table form in ``srcpack.toml``)."""

    include: Union[str, Sequence[str]]
    outfile: Optional[str] = None
    index: bool = True
    prompt: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "BundleSpec":
        return cls(
            include=data["include"],  # type: ignore[arg-type]
            outfile=data.get("outfile"),  # type: ignore[arg-type]
            index=bool(data.get("index", True)),
            prompt=data.get("prompt"),  # type: ignore[arg-type]
        )

    @property
    def patterns(self) -> List[str]:
        if isinstance(self.include, str):
            return [self.include]
        return list(self.include)


BundleConfig = Union[str, Sequence[str], BundleSpec, Mapping[str, object]]


@dataclass(frozen=True)
class PatternSet:
    include: Tuple[str, ...] = ()
    exclude: Tuple[str, ...] = ()
    force: Tuple[str, ...] = ()


@dataclass
class FileEntry:
    path: str
    lines: int
    start_line: int
    end_line: int


@dataclass
class BundleResult:
    content: str
    index: List[FileEntry]

    @property
    def total_lines(self) -> int:
        return sum(entry.lines for entry in self.index)


def _as_spec(config: BundleConfig) -> Optional[BundleSpec]:
    if isinstance(config, BundleSpec):
        return config
    if isinstance(config, Mapping):
        return BundleSpec.from_mapping(config)
    return None


def normalize_patterns(config: BundleConfig) -> PatternSet:
    """
    Split a bundle's patterns by prefix.

    ``!pattern`` excludes, ``+pattern`` force-includes past ``.gitignore``,
    anything else is a regular include. Only the first character counts.
    """
    if isinstance(config, str):
        raw = [config]
    else:
        spec = _as_spec(config)
        raw = spec.patterns if spec is not None else list(config)  # type: ignore[arg-type]

    include: List[str] = []
    exclude: List[str] = []
    force: List[str] = []
    for pattern in raw:
        if pattern.startswith("!"):
            exclude.append(pattern[1:])
        elif pattern.startswith("+"):
            force.append(pattern[1:])
        else:
            include.append(pattern)
    return PatternSet(tuple(include), tuple(exclude), tuple(force))


def get_include_index(config: BundleConfig) -> bool:
    spec = _as_spec(config)
    return True if spec is None else spec.index


def get_prompt(config: BundleConfig) -> Optional[str]:
    spec = _as_spec(config)
    if spec is None or not spec.prompt or not spec.prompt.strip():
        return None
    return spec.prompt


# Glob matching
def _split_alternatives(body: str) -> List[str]:
    parts: List[str] = []
    current: List[str] = []
    depth = 0
    for ch in body:
        if ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        current.append(ch)
    parts.append("".join(current))
    return parts


def expand_braces(pattern: str) -> List[str]:
    """Expand ``{a,b}`` groups (nested allowed); ``{a}`` stays literal."""
    depth = 0
    start = 0
    for i, ch in enumerate(pattern):
        if ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth:
            depth -= 1
            if depth:
                continue
            alternatives = _split_alternatives(pattern[start + 1:i])
            if len(alternatives) < 2:
                continue
            prefix, suffix = pattern[:start], pattern[i + 1:]
            return [
                expanded
                for alt in alternatives
                for expanded in expand_braces(prefix + alt + suffix)
            ]
    return [pattern]


def compile_globs(
    patterns: Iterable[str],
    include_hidden: bool = True,
) -> Optional["re.Pattern[str]"]:
    """
    Compile glob patterns into one regex over POSIX relative paths.

    ``*`` and ``?`` stay within a path segment and ``**`` spans any number of
    segments (including none). With *include_hidden* off, wildcards do not
    match a segment starting with ``.``. Returns ``None`` for an empty
    pattern list.
    """
    sources: List[str] = []
    for pattern in patterns:
        if pattern.startswith("./"):
            pattern = pattern[2:]
        for expanded in expand_braces(pattern):
            sources.append(
                glob.translate(
                    expanded, recursive=True, include_hidden=include_hidden, seps="/"
                )
            )
    if not sources:
        return None
    return re.compile("|".join(f"(?:{src})" for src in sources))


def _matches(rel: str, matcher: Optional["re.Pattern[str]"]) -> bool:
    return matcher is not None and matcher.match(rel) is not None


# Ignore-file utilities
def gitignore_prune_patterns(lines: Sequence[str]) -> List[str]:
    """
    Turn the plain directory names of a ``.gitignore`` into ``**/<name>/**``
    globs used to skip whole directories while walking.

    Any negation line disables pruning entirely, since it could re-include
    something below an otherwise ignored directory.
    """
    if any(line.strip().startswith("!") for line in lines):
        return []

    patterns: List[str] = []
    for line in lines:
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        if trimmed.startswith("/") or any(ch in trimmed for ch in "*?[\\"):
            continue
        name = trimmed[:-1] if trimmed.endswith("/") else trimmed
        if "/" in name:
            continue
        if name and _SIMPLE_DIR_NAME.match(name):
            patterns.append(f"**/{name}/**")
    return patterns


@dataclass(frozen=True)
class _DirRule:
    negated: bool
    spec: pathspec.PathSpec
    # "dir/**" matches everything below dir but not dir itself
    contents_only: bool

    def matches_dir(self, rel_dir: str) -> bool:
        return self.spec.match_file(rel_dir if self.contents_only else rel_dir + "/")


def _dir_rules(lines: Sequence[str]) -> Tuple[_DirRule, ...]:
    rules: List[_DirRule] = []
    for line in lines:
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        negated = trimmed.startswith("!")
        body = trimmed[1:] if negated else trimmed
        if not body:
            continue
        rules.append(
            _DirRule(negated, pathspec.GitIgnoreSpec.from_lines([body]), body.endswith("/**"))
        )
    return tuple(rules)


@dataclass
class IgnoreRules:
    spec: pathspec.PathSpec
    prune_patterns: Tuple[str, ...] = ()
    dir_rules: Tuple[_DirRule, ...] = ()
    _excluded_dirs: Dict[str, bool] = field(default_factory=dict, repr=False)

    def _dir_excluded(self, rel_dir: str) -> bool:
        if rel_dir not in self._excluded_dirs:
            excluded = False
            for rule in self.dir_rules:
                if rule.matches_dir(rel_dir):
                    excluded = not rule.negated
            self._excluded_dirs[rel_dir] = excluded
        return self._excluded_dirs[rel_dir]

    def ignores(self, rel: str) -> bool:
        """
        Apply ``.gitignore`` to a file path the way git does: a file below an
        excluded directory stays ignored even when a later ``!`` rule names
        it, otherwise the last matching rule wins.
        """
        parents = rel.split("/")[:-1]
        for depth in range(1, len(parents) + 1):
            if self._dir_excluded("/".join(parents[:depth])):
                return True
        return self.spec.match_file(rel)


def load_gitignore(root: Path) -> IgnoreRules:
    gitignore_path = root / GITIGNORE_NAME
    if not gitignore_path.is_file():
        return IgnoreRules(pathspec.GitIgnoreSpec.from_lines([]))
    try:
        text = gitignore_path.read_bytes().decode("utf-8", errors="replace")
    except OSError as e:
        raise FileReadError(f"Could not read '{gitignore_path}': {e}") from e
    lines = text.splitlines()
    return IgnoreRules(
        pathspec.GitIgnoreSpec.from_lines(lines),
        tuple(gitignore_prune_patterns(lines)),
        _dir_rules(lines),
    )


# File-scanning helpers
def _check_root(cwd: Union[str, Path]) -> Path:
    root = Path(cwd)
    if not root.exists():
        raise InvalidRootError(f"Root directory '{root}' does not exist")
    if not root.is_dir():
        raise InvalidRootError(f"Root path '{root}' is not a directory")
    return root


def _raise_scan_error(e: OSError) -> None:
    raise FileReadError(f"Could not scan '{e.filename}': {e}") from e


def _dir_key(path: str) -> Tuple[int, int]:
    try:
        st = os.stat(path)
    except OSError as e:
        raise FileReadError(f"Could not scan '{path}': {e}") from e
    return st.st_dev, st.st_ino


def _walk_files(root: Path, prune: Optional["re.Pattern[str]"] = None) -> Iterator[str]:
    """
    Yield every file below *root* as a POSIX relative path.

    Symlinked directories are followed; a link back to one of its own
    ancestors is skipped. Directories that cannot be listed raise
    :class:`FileReadError`.
    """
    top = os.fspath(root)
    ancestry = {top: frozenset([_dir_key(top)])}
    for dirpath, dirnames, filenames in os.walk(top, onerror=_raise_scan_error, followlinks=True):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        prefix = "" if rel_dir == "." else rel_dir + "/"
        chain = ancestry.pop(dirpath)
        kept: List[str] = []
        for d in dirnames:
            if _matches(f"{prefix}{d}/", prune):
                continue
            child = os.path.join(dirpath, d)
            key = _dir_key(child)
            if key in chain:
                continue
            ancestry[child] = chain | {key}
            kept.append(d)
        dirnames[:] = kept
        for name in filenames:
            if os.path.isfile(os.path.join(dirpath, name)):
                yield prefix + name


def _is_binary(data: bytes) -> bool:
    return b"\0" in data


def is_binary(path: Path) -> bool:
    """True for a non-empty file with a null byte in its first 8 KiB."""
    try:
        size = path.stat().st_size
        if size == 0:
            return False
        with path.open("rb") as fh:
            return _is_binary(fh.read(min(size, BINARY_CHECK_SIZE)))
    except OSError as e:
        raise FileReadError(f"Could not read '{path}': {e}") from e


def resolve_patterns(
    config: BundleConfig,
    cwd: Union[str, Path],
    verbose: bool = False,
) -> List[str]:
    """
    Resolve a bundle's patterns to sorted POSIX paths relative to *cwd*.

    Regular patterns respect ``.gitignore``; ``+`` patterns bypass it;
    ``!`` patterns and the binary check apply to both.
    """
    root = _check_root(cwd)
    patterns = normalize_patterns(config)
    excluded = compile_globs(patterns.exclude, include_hidden=False)
    rules = load_gitignore(root)
    files: Set[str] = set()

    def _keep(rel: str) -> bool:
        if is_binary(root / rel):
            if verbose:
                echo(f"- Skipping binary {rel}", Fore.YELLOW)
            return False
        return True

    included = compile_globs(patterns.include)
    if included is not None:
        prune = compile_globs(rules.prune_patterns)
        for rel in _walk_files(root, prune):
            if not _matches(rel, included) or _matches(rel, excluded):
                continue
            if rules.ignores(rel):
                continue
            if _keep(rel):
                files.add(rel)

    forced = compile_globs(patterns.force)
    if forced is not None:
        for rel in _walk_files(root):
            if rel in files or not _matches(rel, forced) or _matches(rel, excluded):
                continue
            if _keep(rel):
                files.add(rel)

    return sorted(files)


# Line accounting
def count_lines(content: str) -> int:
    """Count lines; a final line without ``\\n`` still counts."""
    if content == "":
        return 0
    newlines = content.count("\n")
    return newlines if content.endswith("\n") else newlines + 1


def _read_text(root: Path, rel: str) -> str:
    try:
        return (root / rel).read_bytes().decode("utf-8", errors="replace")
    except OSError as e:
        raise FileReadError(f"Could not read {rel}: {e}") from e


def _read_all(root: Path, files: Sequence[str], max_workers: Optional[int]) -> List[str]:
    if not files:
        return []
    # map() keeps input order, so the line fold below stays deterministic
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        return list(pool.map(lambda rel: _read_text(root, rel), files))


# Rendering
def format_index(index: Sequence[FileEntry]) -> str:
    """
    Render the index header.

    Entries are numbered to match the file separators and use ASCII only so
    the block pastes cleanly into chat interfaces and Markdown.
    """
    if not index:
        return "# Index\n# (empty)"

    count = len(index)
    lines = [f"# Index ({count} file{'' if count == 1 else 's'})"]
    for i, entry in enumerate(index, start=1):
        num = f"[{i}]".ljust(5)
        line_word = "line" if entry.lines == 1 else "lines"
        lines.append(
            f"# {num} {entry.path}  L{entry.start_line}-L{entry.end_line} "
            f"({entry.lines} {line_word})"
        )
    return "\n".join(lines)


def format_separator(position: int, path: str) -> str:
    return f"#==> [{position}] {path} <=="


def _shift(index: Iterable[FileEntry], offset: int) -> None:
    for entry in index:
        entry.start_line += offset
        entry.end_line += offset


def create_bundle(
    files: Sequence[str],
    cwd: Union[str, Path],
    include_index: bool = True,
    prompt: Optional[str] = None,
    max_workers: Optional[int] = None,
) -> BundleResult:
    """
    Render *files* (relative to *cwd*) into one bundle.

    Index line numbers point at the first line of each file's content, not at
    its separator, and account for the index and prompt header.
    """
    root = Path(cwd)
    prompt = (prompt or "").strip() or None
    texts = _read_all(root, files, max_workers)

    index: List[FileEntry] = []
    parts: List[str] = []
    current_line = 1
    for position, (rel, text) in enumerate(zip(files, texts), start=1):
        lines = count_lines(text)
        start = current_line + 1
        entry = FileEntry(rel, lines, start, start + max(0, lines - 1))
        index.append(entry)
        parts.append(format_separator(position, rel))
        parts.append(text[:-1] if text.endswith("\n") else text)
        current_line = entry.end_line + 1

    # prompt, blank, "---", blank
    prompt_lines = count_lines(prompt) + 3 if prompt else 0

    if include_index:
        # "# Index (N files)", N entries, blank
        _shift(index, len(index) + 2 + prompt_lines)
        body = format_index(index)
        if index:
            body += "\n\n" + "\n".join(parts)
    else:
        _shift(index, prompt_lines)
        body = "\n".join(parts)

    content = f"{prompt}\n\n---\n\n{body}" if prompt else body
    return BundleResult(content, index)


# Bundle entry point
def resolve_prompt(prompt: Optional[str], cwd: Union[str, Path]) -> Optional[str]:
    """
    Resolve a prompt setting to its text.

    Values starting with ``./``, ``../`` or ``~/`` name a file to read;
    anything else is inline text. Blank results mean no prompt.
    """
    if not prompt:
        return None

    if prompt.startswith(("./", "../", "~/")):
        if prompt.startswith("~/"):
            path = Path(expand_path(prompt))
        else:
            path = Path(cwd) / prompt
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise FileReadError(f"Could not read prompt file '{prompt}': {e}") from e
        return text.strip() or None

    return prompt.strip() or None


def bundle_one(
    name: str,
    config: BundleConfig,
    cwd: Union[str, Path],
    verbose: bool = False,
) -> BundleResult:
    files = resolve_patterns(config, cwd, verbose=verbose)
    if verbose:
        echo(f"{name}: {len(files)} files matched")
    prompt = resolve_prompt(get_prompt(config), cwd)
    return create_bundle(files, cwd, include_index=get_include_index(config), prompt=prompt)
