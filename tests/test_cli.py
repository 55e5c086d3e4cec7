"""test suite for the command line interface."""
import pytest
import json
import sys
import tempfile
from pathlib import Path

from typer.testing import CliRunner

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from deptree.cli.main import app, exit_code_for
from deptree.domain.errors import CycleDetected, DeptreeError, PackageNotFound, ResolutionTimeout, VersionNotFound

FIXTURES = Path(__file__).parent / "fixtures"
REACT_REGISTRY = str(FIXTURES / "react-registry.json")

runner = CliRunner()


def parse_json(output: str):
    # progress messages may share the captured stream
    return json.loads(output[output.index("{"):])


@pytest.fixture
def workdir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def invoke(workdir):
    config = str(workdir / "config")

    def _invoke(*args):
        return runner.invoke(app, ["--config", config, *args])
    return _invoke


def write_registry(workdir: Path, packages) -> str:
    path = workdir / "registry.json"
    path.write_text(json.dumps(packages))
    return str(path)


class TestResolveCommand:
    def test_json_output(self, invoke):
        result = invoke("resolve", "react", "16.13.0", "--registry-file", REACT_REGISTRY, "--json")

        assert result.exit_code == 0, result.output
        tree = parse_json(result.stdout)
        assert tree["name"] == "react"
        assert tree["version"] == "16.13.0"
        assert tree["dependencies"]["prop-types"]["dependencies"]["react-is"]["version"] == "16.13.1"

    def test_tree_output(self, invoke):
        result = invoke("resolve", "react", "16.13.0", "--registry-file", REACT_REGISTRY)

        assert result.exit_code == 0, result.output
        assert "react@16.13.0" in result.output
        assert "prop-types@15.7.2" in result.output
        assert "js-tokens@4.0.0" in result.output

    def test_percent_encoded_name(self, invoke, workdir):
        registry = write_registry(workdir, {"@scope/pkg": {"1.0.0": {}}})
        result = invoke("resolve", "%40scope%2Fpkg", "1.0.0", "--registry-file", registry, "--json")

        assert result.exit_code == 0, result.output
        assert parse_json(result.stdout)["name"] == "@scope/pkg"

    def test_missing_version_exit_code(self, invoke):
        result = invoke("resolve", "react", "999.0.0", "--registry-file", REACT_REGISTRY)
        assert result.exit_code == 3
        assert "999.0.0" in result.output

    def test_missing_package_exit_code(self, invoke):
        result = invoke("resolve", "nonexistent-pkg", "1.0.0", "--registry-file", REACT_REGISTRY)
        assert result.exit_code == 2

    def test_cycle_exit_code(self, invoke, workdir):
        registry = write_registry(workdir, {
            "a": {"1.0.0": {"b": "^1.0.0"}},
            "b": {"1.0.0": {"a": "^1.0.0"}},
        })
        result = invoke("resolve", "a", "1.0.0", "--registry-file", registry)
        assert result.exit_code == 4
        assert "cycle" in result.output

    def test_annotate_policy(self, invoke, workdir):
        registry = write_registry(workdir, {"a": {"1.0.0": {"ghost": "^1.0.0", "b": "*"}}, "b": {"1.0.0": {}}})
        result = invoke("resolve", "a", "1.0.0", "--registry-file", registry, "--policy", "annotate", "--json")

        assert result.exit_code == 0, result.output
        tree = parse_json(result.stdout)
        assert tree["dependencies"]["ghost"]["error"] == "package_not_found"
        assert tree["dependencies"]["b"]["version"] == "1.0.0"

    def test_json_output_for_deep_chain(self, invoke, workdir):
        depth = 1500
        packages = {f"p{i}": {"1.0.0": {f"p{i + 1}": "^1.0.0"}} for i in range(depth)}
        packages[f"p{depth}"] = {"1.0.0": {}}
        registry = write_registry(workdir, packages)

        result = invoke("resolve", "p0", "1.0.0", "--registry-file", registry, "--json")

        assert result.exit_code == 0, result.output
        assert result.stdout.count('"version": "1.0.0"') == depth + 1
        assert f'"p{depth}": {{' in result.stdout

    def test_unreadable_registry_file(self, invoke, workdir):
        result = invoke("resolve", "a", "1.0.0", "--registry-file", str(workdir / "missing.json"))
        assert result.exit_code == 1


class TestVersionsCommand:
    def test_lists_versions_and_selection(self, invoke):
        result = invoke("versions", "react", "^16.0.0", "--registry-file", REACT_REGISTRY)

        assert result.exit_code == 0, result.output
        assert "17.0.0" in result.output
        assert "^16.0.0 -> 16.13.1" in result.output

    def test_unsatisfiable_range(self, invoke):
        result = invoke("versions", "react", "^99.0.0", "--registry-file", REACT_REGISTRY)
        assert result.exit_code == 3


class TestConfigCommands:
    def test_set_and_show(self, invoke):
        result = invoke("config", "set", "concurrency", "3")
        assert result.exit_code == 0, result.output

        result = invoke("config", "show")
        assert result.exit_code == 0, result.output
        assert "concurrency" in result.output
        assert "3" in result.output

    def test_set_invalid(self, invoke):
        result = invoke("config", "set", "concurrency", "zero")
        assert result.exit_code == 1

    def test_cache_clear(self, invoke, workdir):
        cache_dir = workdir / "cache"
        invoke("config", "set", "cache_dir", str(cache_dir))
        (cache_dir).mkdir()
        (cache_dir / "react.json").write_text("{}")

        result = invoke("cache", "clear")

        assert result.exit_code == 0, result.output
        assert list(cache_dir.iterdir()) == []


class TestExitCodes:
    def test_mapping(self):
        assert exit_code_for(PackageNotFound("a")) == 2
        assert exit_code_for(VersionNotFound("a", "1.0.0")) == 3
        assert exit_code_for(CycleDetected("a", "1.0.0", path=[("a", "1.0.0")])) == 4
        assert exit_code_for(ResolutionTimeout("a", "1.0.0", 1.0)) == 5
        assert exit_code_for(DeptreeError("boom")) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
