from pathlib import Path

import pytest

from srcpack.config import (
    ConfigError,
    add_to_gitignore,
    find_config,
    generate_config,
    load_config,
    load_config_file,
    parse_config,
    write_starter_config,
)
from srcpack.core import BundleSpec, expand_path


@pytest.mark.parametrize("value", ["~/", "~/foo", "~/foo/bar.txt"])
def test_expand_path_home(value):
    assert expand_path(value) == str(Path.home() / value[2:])


@pytest.mark.parametrize("value", ["/abs/path", "rel/path", "~user/x", "~"])
def test_expand_path_leaves_other_paths(value):
    assert expand_path(value) == value


def test_accepts_all_bundle_shapes():
    config = parse_config(
        {
            "bundles": {
                "web": "src/**/*",
                "api": ["api/**/*", "!api/specs"],
                "docs": {"include": "docs/**/*.md", "outfile": "out/docs.txt", "index": False},
            }
        }
    )

    assert config.bundles["web"] == "src/**/*"
    assert config.bundles["api"] == ["api/**/*", "!api/specs"]
    assert config.bundles["docs"] == BundleSpec(
        include="docs/**/*.md", outfile="out/docs.txt", index=False
    )


def test_defaults():
    config = parse_config({"bundles": {"web": {"include": ["src/**/*"]}}})

    assert config.out_dir == ".srcpack"
    assert config.bundles["web"].index is True
    assert config.outfile_for("web") == str(Path(".srcpack") / "web.txt")


def test_outfile_for_uses_explicit_outfile():
    config = parse_config({"bundles": {"web": {"include": "src/*", "outfile": "dist/web.md"}}})

    assert config.outfile_for("web") == "dist/web.md"


def test_tilde_expanded_in_out_dir_and_outfile_only():
    config = parse_config(
        {
            "outDir": "~/srcpack-output",
            "bundles": {"web": "~/src/**/*", "api": {"include": "a/*", "outfile": "~/downloads/api.txt"}},
        }
    )

    assert config.out_dir == str(Path.home() / "srcpack-output")
    assert config.bundles["api"].outfile == str(Path.home() / "downloads/api.txt")
    assert config.bundles["web"] == "~/src/**/*"


def test_allows_empty_bundles_and_ignores_unknown_keys():
    config = parse_config({"bundles": {}, "upload": {"provider": "gdrive"}})

    assert config.bundles == {}


@pytest.mark.parametrize(
    "payload, where",
    [
        ({}, "bundles"),
        ({"bundles": []}, "bundles"),
        ({"bundles": {"web": ""}}, "bundles.web"),
        ({"bundles": {"web": []}}, "bundles.web"),
        ({"bundles": {"web": 123}}, "bundles.web"),
        ({"bundles": {"web": ["ok", ""]}}, "bundles.web.1"),
        ({"bundles": {"web": {"outfile": "x"}}}, "bundles.web.include"),
        ({"bundles": {"web": {"include": "x", "index": "yes"}}}, "bundles.web.index"),
        ({"bundles": {"web": {"include": "x", "prompt": 1}}}, "bundles.web.prompt"),
        ({"outDir": "", "bundles": {}}, "outDir"),
        ({"bundles": {"init": "src/**/*"}}, "bundles.init"),
    ],
)
def test_invalid_config(payload, where):
    with pytest.raises(ConfigError) as excinfo:
        parse_config(payload)

    assert str(excinfo.value).startswith(f"{where}:")


def test_load_srcpack_toml(tmp_path):
    path = tmp_path / "srcpack.toml"
    path.write_text('outDir = "bundles"\n\n[bundles]\nweb = "src/**/*"\n')

    config = load_config_file(path)

    assert config.out_dir == "bundles"
    assert config.path == path


def test_load_pyproject_tool_table(tmp_path):
    path = tmp_path / "pyproject.toml"
    path.write_text('[project]\nname = "x"\n\n[tool.srcpack.bundles]\nweb = ["src/**/*.py"]\n')

    assert load_config_file(path).bundles == {"web": ["src/**/*.py"]}


def test_pyproject_without_table_is_an_error(tmp_path):
    path = tmp_path / "pyproject.toml"
    path.write_text('[project]\nname = "x"\n')

    with pytest.raises(ConfigError):
        load_config_file(path)


def test_invalid_toml(tmp_path):
    path = tmp_path / "srcpack.toml"
    path.write_text("bundles = [")

    with pytest.raises(ConfigError):
        load_config_file(path)


def test_find_config_searches_parents(tmp_path):
    (tmp_path / "srcpack.toml").write_text("[bundles]\n")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    (nested / "pyproject.toml").write_text('[project]\nname = "unrelated"\n')

    assert find_config(nested) == (tmp_path / "srcpack.toml").resolve()
    assert load_config(nested).bundles == {}


def test_find_config_prefers_srcpack_toml(tmp_path):
    (tmp_path / "srcpack.toml").write_text("[bundles]\n")
    (tmp_path / "pyproject.toml").write_text("[tool.srcpack]\nbundles = {}\n")

    assert find_config(tmp_path).name == "srcpack.toml"


def test_generate_config():
    body = generate_config({"web": ["src/**/*"], "api": ["api/**", "!api/tests/**"]}, "out")

    assert body == (
        'outDir = "out"\n'
        "\n"
        "[bundles]\n"
        'web = "src/**/*"\n'
        'api = ["api/**", "!api/tests/**"]\n'
    )
    with pytest.raises(ConfigError):
        generate_config({"Bad Name": ["x"]})
    with pytest.raises(ConfigError):
        generate_config({"init": ["src/**/*"]})


def test_write_starter_config_round_trips(tmp_path):
    path = write_starter_config(tmp_path, {"web": ["src/**/*"]})

    assert load_config_file(path).bundles == {"web": "src/**/*"}
    with pytest.raises(ConfigError):
        write_starter_config(tmp_path, {"web": ["src/**/*"]})
    write_starter_config(tmp_path, {"api": ["api/*"]}, force=True)
    assert list(load_config_file(path).bundles) == ["api"]


def test_add_to_gitignore(tmp_path):
    assert add_to_gitignore(tmp_path, ".srcpack") is False

    gitignore = tmp_path / ".gitignore"
    gitignore.write_text("node_modules")
    assert add_to_gitignore(tmp_path, ".srcpack") is True
    assert gitignore.read_text() == "node_modules\n.srcpack/\n"

    assert add_to_gitignore(tmp_path, ".srcpack") is False
    gitignore.write_text("out\n")
    assert add_to_gitignore(tmp_path, "out/") is False
