from __future__ import annotations

from pathlib import Path
from typing import Callable, Mapping, Union

import pytest

Tree = Mapping[str, Union[str, bytes]]


def write_tree(root: Path, files: Tree) -> Path:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_bytes(content.encode("utf-8"))
    return root


@pytest.fixture
def make_tree(tmp_path: Path) -> Callable[[Tree], Path]:
    def _make(files: Tree) -> Path:
        return write_tree(tmp_path, files)

    return _make


@pytest.fixture
def sample_project(make_tree) -> Path:
    return make_tree(
        {
            "src/index.ts": 'export const greeting = "Hello, srcpack!";\n',
            "src/utils/helpers.ts": (
                "export function add(a: number, b: number): number {\n"
                "  return a + b;\n"
                "}\n"
            ),
            "src/utils/format.js": "module.exports = (s) => s.trim();\n",
            "README.md": "# sample\n",
        }
    )
