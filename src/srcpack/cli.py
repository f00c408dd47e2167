"""
CLI entrypoint for srcpack.
"""
from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from colorama import Fore, init as colorama_init

from . import __version__
from .config import DEFAULT_OUT_DIR, Config, load_config, load_config_file, write_starter_config
from .core import BundleResult, OutputError, SrcpackError, bundle_one, echo

colorama_init()


@dataclass
class BundleOutput:
    name: str
    outfile: str
    result: BundleResult


def _plural(n: int, singular: str, plural_form: Optional[str] = None) -> str:
    return singular if n == 1 else (plural_form or singular + "s")


def _fmt(n: int) -> str:
    return f"{n:,}"


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="srcpack",
        description="Bundle project files into indexed text files for LLM chat.",
        epilog="Run `srcpack init` to create a starter srcpack.toml.",
    )
    p.add_argument("bundles", nargs="*", metavar="BUNDLE", help="Bundles to build (default: all)")
    p.add_argument("--root", type=Path, default=Path("."), help="Project root dir")
    p.add_argument("--config", type=Path, help="Config file (default: search for srcpack.toml)")
    p.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview bundles without writing files",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p.parse_args(argv)


def _parse_init_args(argv: Sequence[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="srcpack init", description="Create srcpack.toml.")
    p.add_argument("--root", type=Path, default=Path("."), help="Project root dir")
    p.add_argument("--name", default="default", help="Bundle name (default: default)")
    p.add_argument(
        "--include",
        action="append",
        metavar="PATTERN",
        help="Include pattern, repeatable (default: src/**/*)",
    )
    p.add_argument("--out-dir", default=DEFAULT_OUT_DIR, help=f"Output dir (default: {DEFAULT_OUT_DIR})")
    p.add_argument("--force", action="store_true", help="Overwrite an existing srcpack.toml")
    return p.parse_args(argv)


def _run_init(argv: Sequence[str]) -> None:
    ns = _parse_init_args(argv)
    root = ns.root.resolve()
    include = ns.include or ["src/**/*"]
    path = write_starter_config(root, {ns.name: include}, out_dir=ns.out_dir, force=ns.force)
    print(f"Created {path.name}")


def _write_output(path: Path, content: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="\n") as out_fh:
            out_fh.write(content)
    except OSError as e:
        raise OutputError(f"Could not write to output file '{path}': {e}") from e


def _load(ns: argparse.Namespace, root: Path) -> Config:
    config = load_config_file(ns.config.resolve()) if ns.config else load_config(root)
    if config is None:
        print("No configuration found. Run `srcpack init` to create one.", file=sys.stderr)
        sys.exit(1)
    if ns.verbose:
        echo(f"Loaded config from {config.path}")
    return config


def _run(ns: argparse.Namespace) -> None:
    root: Path = ns.root.resolve()
    config = _load(ns, root)

    names: List[str] = ns.bundles or list(config.bundles)
    for name in names:
        if name not in config.bundles:
            print(f"Unknown bundle: {name}", file=sys.stderr)
            sys.exit(1)

    if not names:
        print("No bundles configured.")
        return

    outputs: List[BundleOutput] = []
    for i, name in enumerate(names, start=1):
        if ns.verbose:
            echo(f"Bundling {name}… ({i}/{len(names)})")
        result = bundle_one(name, config.bundles[name], root, verbose=ns.verbose)
        outputs.append(BundleOutput(name, config.outfile_for(name), result))

    name_w = max(len(o.name) for o in outputs)
    files_w = max(len(_fmt(len(o.result.index))) for o in outputs)
    lines_w = max(len(_fmt(o.result.total_lines)) for o in outputs)

    print()
    for output in outputs:
        file_count = len(output.result.index)
        line_count = output.result.total_lines
        row = (
            f"  {output.name.ljust(name_w)}  "
            f"{_fmt(file_count).rjust(files_w)} {_plural(file_count, 'file')}  "
            f"{_fmt(line_count).rjust(lines_w)} {_plural(line_count, 'line')}"
        )
        if ns.dry_run:
            print(row)
            for entry in output.result.index:
                print(f"    {entry.path}")
        else:
            _write_output(root / output.outfile, output.result.content)
            print(f"{row}  → {output.outfile}")

    total_files = sum(len(o.result.index) for o in outputs)
    total_lines = sum(o.result.total_lines for o in outputs)
    summary = (
        f"{len(outputs)} {_plural(len(outputs), 'bundle')}, "
        f"{_fmt(total_files)} {_plural(total_files, 'file')}, "
        f"{_fmt(total_lines)} {_plural(total_lines, 'line')}"
    )
    print()
    print(f"Dry run: {summary}" if ns.dry_run else f"Bundled: {summary}")
    if ns.verbose:
        echo("Done.", Fore.GREEN)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = list(sys.argv[1:] if argv is None else argv)
    try:
        if args[:1] == ["init"]:
            _run_init(args[1:])
        else:
            _run(_parse_args(args))
    except SrcpackError as e:
        print(Fore.RED + f"Error: {e}" + Fore.RESET, file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nCancelled.", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
