"""
Configuration discovery and validation for srcpack.

A project is configured by ``srcpack.toml`` or by a ``[tool.srcpack]`` table
in ``pyproject.toml``::

    outDir = ".srcpack"

    [bundles]
    web = "src/**/*"
    api = ["api/**/*.py", "!api/**/test_*.py"]
    docs = { include = "docs/**/*.md", outfile = "~/Downloads/docs.txt", prompt = "./PROMPT.md" }
"""

from __future__ import annotations

import json
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from .core import BundleConfig, BundleSpec, SrcpackError, expand_path

CONFIG_FILENAME = "srcpack.toml"
PYPROJECT_FILENAME = "pyproject.toml"
DEFAULT_OUT_DIR = ".srcpack"

_BUNDLE_NAME = re.compile(r"^[a-z][a-z0-9-]*$")

# Names taken by CLI subcommands
RESERVED_BUNDLE_NAMES = frozenset({"init"})


class ConfigError(SrcpackError):
    """Raised when a config file is unreadable or has the wrong shape."""


@dataclass
class Config:
    bundles: Dict[str, BundleConfig] = field(default_factory=dict)
    out_dir: str = DEFAULT_OUT_DIR
    path: Optional[Path] = None

    def outfile_for(self, name: str) -> str:
        """Where bundle *name* is written, relative to the project root."""
        bundle = self.bundles[name]
        if isinstance(bundle, BundleSpec) and bundle.outfile:
            return bundle.outfile
        return str(Path(self.out_dir) / f"{name}.txt")


# Validation
def _parse_patterns(where: str, value: object) -> List[str]:
    if isinstance(value, str):
        if not value:
            raise ConfigError(f"{where}: pattern must not be empty")
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"{where}: expected a pattern string or an array of patterns")
    if not value:
        raise ConfigError(f"{where}: at least one pattern is required")
    for i, item in enumerate(value):
        if not isinstance(item, str) or not item:
            raise ConfigError(f"{where}.{i}: pattern must be a non-empty string")
    return list(value)


def _optional_str(where: str, value: object) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{where}: expected a string")
    return value


def _parse_bundle(name: str, value: object) -> BundleConfig:
    where = f"bundles.{name}"
    if name in RESERVED_BUNDLE_NAMES:
        raise ConfigError(f"{where}: '{name}' is reserved for the {name} command")
    if isinstance(value, str):
        return _parse_patterns(where, value)[0]
    if isinstance(value, list):
        return _parse_patterns(where, value)
    if not isinstance(value, dict):
        raise ConfigError(
            f"{where}: expected a pattern string, an array of patterns, "
            "or a table with 'include'"
        )

    if "include" not in value:
        raise ConfigError(f"{where}.include: required")
    include = value["include"]
    patterns = _parse_patterns(f"{where}.include", include)

    index = value.get("index", True)
    if not isinstance(index, bool):
        raise ConfigError(f"{where}.index: expected a boolean")

    outfile = _optional_str(f"{where}.outfile", value.get("outfile"))
    return BundleSpec(
        include=include if isinstance(include, str) else patterns,
        outfile=expand_path(outfile) if outfile else outfile,
        index=index,
        prompt=_optional_str(f"{where}.prompt", value.get("prompt")),
    )


def parse_config(payload: Mapping[str, object], path: Optional[Path] = None) -> Config:
    """Validate a decoded config table. Unknown keys are ignored."""
    if not isinstance(payload, Mapping):
        raise ConfigError("config must be a table")

    if "bundles" not in payload:
        raise ConfigError("bundles: required")
    bundles = payload["bundles"]
    if not isinstance(bundles, dict):
        raise ConfigError("bundles: expected a table")

    out_dir = payload.get("outDir", payload.get("out_dir", DEFAULT_OUT_DIR))
    if not isinstance(out_dir, str) or not out_dir:
        raise ConfigError("outDir: expected a non-empty string")

    return Config(
        bundles={name: _parse_bundle(name, value) for name, value in bundles.items()},
        out_dir=expand_path(out_dir),
        path=path,
    )


# Loading
def _read_toml(path: Path) -> Dict[str, object]:
    try:
        with path.open("rb") as fh:
            return tomllib.load(fh)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in '{path}': {e}") from e
    except OSError as e:
        raise ConfigError(f"Could not read config file '{path}': {e}") from e


def _tool_table(payload: Mapping[str, object]) -> Optional[Mapping[str, object]]:
    tool = payload.get("tool")
    if not isinstance(tool, dict):
        return None
    table = tool.get("srcpack")
    return table if isinstance(table, dict) else None


def load_config_file(path: Path) -> Config:
    """Load one config file; ``pyproject.toml`` is read from ``[tool.srcpack]``."""
    if not path.exists():
        raise ConfigError(f"Config file '{path}' does not exist")
    if not path.is_file():
        raise ConfigError(f"'{path}' is not a file")

    payload = _read_toml(path)
    if path.name == PYPROJECT_FILENAME:
        table = _tool_table(payload)
        if table is None:
            raise ConfigError(f"'{path}' has no [tool.srcpack] table")
        payload = table
    return parse_config(payload, path=path)


def find_config(start: Path) -> Optional[Path]:
    """Search *start* and its parents for ``srcpack.toml`` or a usable ``pyproject.toml``."""
    start = start.resolve()
    for directory in (start, *start.parents):
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        pyproject = directory / PYPROJECT_FILENAME
        if pyproject.is_file() and _tool_table(_read_toml(pyproject)) is not None:
            return pyproject
    return None


def load_config(search_from: Optional[Path] = None) -> Optional[Config]:
    path = find_config(search_from or Path.cwd())
    if path is None:
        return None
    return load_config_file(path)


# Starter config
def generate_config(bundles: Mapping[str, Sequence[str]], out_dir: str = DEFAULT_OUT_DIR) -> str:
    """Render a ``srcpack.toml`` body for *bundles*."""
    lines = [f"outDir = {json.dumps(out_dir)}", "", "[bundles]"]
    for name, include in bundles.items():
        if not _BUNDLE_NAME.match(name):
            raise ConfigError(
                f"bundles.{name}: use lowercase alphanumeric characters and hyphens"
            )
        if name in RESERVED_BUNDLE_NAMES:
            raise ConfigError(f"bundles.{name}: '{name}' is reserved for the {name} command")
        include = list(include)
        if not include:
            raise ConfigError(f"bundles.{name}: at least one pattern is required")
        value = json.dumps(include[0]) if len(include) == 1 else json.dumps(include)
        lines.append(f"{name} = {value}")
    return "\n".join(lines) + "\n"


def add_to_gitignore(root: Path, out_dir: str) -> bool:
    """
    Append *out_dir* to an existing ``.gitignore``.

    Returns False when there is no ``.gitignore`` or the entry is already
    listed, with or without a trailing slash.
    """
    gitignore_path = root / ".gitignore"
    if not gitignore_path.is_file():
        return False

    content = gitignore_path.read_text(encoding="utf-8")
    name = out_dir.rstrip("/")
    entry = f"{name}/"
    existing = {line.strip() for line in content.split("\n")}
    if name in existing or entry in existing:
        return False

    prefix = "" if content.endswith("\n") or not content else "\n"
    with gitignore_path.open("a", encoding="utf-8", newline="\n") as fh:
        fh.write(f"{prefix}{entry}\n")
    return True


def write_starter_config(
    root: Path,
    bundles: Mapping[str, Sequence[str]],
    out_dir: str = DEFAULT_OUT_DIR,
    force: bool = False,
) -> Path:
    config_path = root / CONFIG_FILENAME
    if config_path.exists() and not force:
        raise ConfigError(f"{CONFIG_FILENAME} already exists (use --force to overwrite)")

    body = generate_config(bundles, out_dir)
    try:
        config_path.write_text(body, encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Could not write '{config_path}': {e}") from e
    add_to_gitignore(root, out_dir)
    return config_path
