"""
srcpack - bundle a source tree into indexed text files for LLM chat.

Each configured bundle resolves its glob patterns against the project
(respecting .gitignore, skipping binary files), then concatenates the files
behind a line-numbered index so a model can cite exact locations.
"""

__version__ = "0.1.0"
__author__ = "srcpack contributors"

from .config import Config, ConfigError, load_config, load_config_file, parse_config
from .core import (
    BundleResult,
    BundleSpec,
    FileEntry,
    FileReadError,
    InvalidRootError,
    OutputError,
    PatternSet,
    SrcpackError,
    bundle_one,
    count_lines,
    create_bundle,
    format_index,
    is_binary,
    normalize_patterns,
    resolve_patterns,
)

__all__ = [
    "BundleResult",
    "BundleSpec",
    "Config",
    "ConfigError",
    "FileEntry",
    "FileReadError",
    "InvalidRootError",
    "OutputError",
    "PatternSet",
    "SrcpackError",
    "bundle_one",
    "count_lines",
    "create_bundle",
    "format_index",
    "is_binary",
    "load_config",
    "load_config_file",
    "normalize_patterns",
    "parse_config",
    "resolve_patterns",
]
