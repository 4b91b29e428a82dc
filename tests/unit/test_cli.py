"""
Unit tests for the tasksync CLI.

Commands are driven through main() with explicit argv, a temporary
database and temporary snapshot files.
"""

import json

import pytest

from tasksync.cli import EXIT_CONFLICT, EXIT_ERROR, EXIT_OK, main
from tasksync.patch.diff import diff
from tasksync.snapshot.canonical import compute_snapshot_rev, stamp_revision
from tasksync.snapshot.file_snapshot import save_snapshot, write_bytes_file
from tasksync.state.sqlite_store import SqliteStateStore


@pytest.fixture(autouse=True)
def workdir(tmp_path, monkeypatch):
    """Run every command from an empty directory with no TASKSYNC_* overrides."""
    for name in ("TASKSYNC_DB_PATH", "TASKSYNC_SNAPSHOT_PATH", "TASKSYNC_STRICT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _write_stamped(snapshot, path):
    _, data = stamp_revision(snapshot)
    write_bytes_file(path, data)
    return str(path)


def _seed_db(path, snapshot):
    store = SqliteStateStore(path)
    store.write_live_state(snapshot)
    store.close()
    return str(path)


def _read_json(capsys):
    return json.loads(capsys.readouterr().out)


class TestStateCommands:
    """Tests for the state command group."""

    def test_export_and_verify(self, workdir, populated_snapshot, capsys):
        db = _seed_db(workdir / "live.db", populated_snapshot)

        code = main(["--db", db, "state", "export", "--out", "state.json", "--json"])

        assert code == EXIT_OK
        payload = _read_json(capsys)
        assert payload["snapshot_rev"] == compute_snapshot_rev(populated_snapshot)
        assert payload["counts"]["tasks"] == 2

        assert main(["state", "verify", "state.json"]) == EXIT_OK
        assert "OK" in capsys.readouterr().out

    def test_verify_tampered_fails(self, workdir, populated_snapshot):
        path = workdir / "state.json"
        _write_stamped(populated_snapshot, path)
        path.write_bytes(path.read_bytes().replace(b"Write docs", b"Edited"))

        assert main(["state", "verify", str(path)]) == EXIT_ERROR

    def test_verify_lone_surrogate_is_malformed(self, workdir, populated_snapshot, caplog):
        """An escaped lone surrogate is reported as malformed input naming the file."""
        doc = populated_snapshot.to_dict()
        next(iter(doc["tasks"].values()))["title"] = "\ud800"
        (workdir / "state.json").write_text(json.dumps(doc), encoding="utf-8")

        assert main(["state", "verify", "state.json"]) == EXIT_ERROR
        assert "state.json" in caplog.text
        assert "lone surrogate" in caplog.text

    def test_import_if_empty(self, workdir, populated_snapshot, capsys):
        source = _write_stamped(populated_snapshot, workdir / "state.json")

        assert main(["--db", "live.db", "state", "import", "--in", source, "--if-empty"]) == EXIT_OK
        assert "Imported" in capsys.readouterr().out
        # second import refuses
        assert main(["--db", "live.db", "state", "import", "--in", source, "--if-empty"]) == EXIT_ERROR

    def test_import_invalid_snapshot_is_strict_failure(self, workdir, factory, base_snapshot):
        base_snapshot.tasks["t"] = factory.task(project_uuid="nowhere")
        source = _write_stamped(base_snapshot, workdir / "bad.json")

        assert main(["--db", "live.db", "state", "import", "--in", source]) == EXIT_CONFLICT

    def test_config_file_paths(self, workdir, populated_snapshot):
        """Defaults for --db and --out come from the YAML config."""
        _seed_db(workdir / "data" / "live.db", populated_snapshot)
        (workdir / "tasksync.yaml").write_text(
            "storage:\n  db_path: data/live.db\nsnapshot:\n  path: exports/state.json\n",
            encoding="utf-8",
        )

        assert main(["--config", "tasksync.yaml", "state", "export"]) == EXIT_OK
        assert (workdir / "exports" / "state.json").exists()


class TestPatchCommands:
    """Tests for the patch command group."""

    @pytest.fixture
    def files(self, workdir, factory, populated_snapshot):
        """Base and target snapshot files where the target adds one task."""
        target = populated_snapshot.clone()
        target.tasks[factory.uuid(5)] = factory.task("T-00005", "five")
        return {
            "base": _write_stamped(populated_snapshot, workdir / "base.json"),
            "target": _write_stamped(target, workdir / "target.json"),
            "patch": str(workdir / "change.patch"),
        }

    def test_create(self, files, capsys):
        code = main(["patch", "create", "--from", files["base"], "--to", files["target"],
                     "--out", files["patch"], "--json"])

        assert code == EXIT_OK
        assert _read_json(capsys) == {"out": files["patch"], "ops": 1, "adds": 1, "replaces": 0, "removes": 0}
        ops = json.loads(open(files["patch"], encoding="utf-8").read())
        assert ops[0]["op"] == "add"

    def test_create_rejects_noncanonical(self, workdir, files, populated_snapshot):
        pretty = workdir / "pretty.json"
        save_snapshot(populated_snapshot, pretty, canonical=False)
        argv = ["patch", "create", "--from", str(pretty), "--to", files["target"], "--out", files["patch"]]

        assert main(argv) == EXIT_ERROR
        assert main(argv + ["--allow-noncanonical"]) == EXIT_OK

    def test_validate(self, files, capsys):
        main(["patch", "create", "--from", files["base"], "--to", files["target"], "--out", files["patch"]])
        capsys.readouterr()

        assert main(["patch", "validate", "--patch", files["patch"], "--base", files["base"]]) == EXIT_OK
        assert "Patch is valid" in capsys.readouterr().out

    def test_validate_strict_exit_code(self, workdir, factory, files, capsys):
        bad = [{"op": "add", "path": "/tasks/x", "value": factory.task(project_uuid="nowhere").to_dict()}]
        (workdir / "bad.patch").write_text(json.dumps(bad), encoding="utf-8")
        argv = ["patch", "validate", "--patch", "bad.patch", "--base", files["base"]]

        assert main(argv) == EXIT_OK
        assert "unknown container" in capsys.readouterr().out
        assert main(argv + ["--strict"]) == EXIT_CONFLICT

    def test_apply_with_if_match(self, workdir, files, populated_snapshot, capsys):
        db = _seed_db(workdir / "live.db", populated_snapshot)
        main(["patch", "create", "--from", files["base"], "--to", files["target"], "--out", files["patch"]])
        capsys.readouterr()
        rev = compute_snapshot_rev(populated_snapshot)

        code = main(["--db", db, "patch", "apply", "--patch", files["patch"], "--if-match", rev, "--json"])

        assert code == EXIT_OK
        payload = _read_json(capsys)
        assert payload["applied"] is True
        assert payload["base_rev"] == rev
        # the same guard now fails: live state moved on
        assert main(["--db", db, "patch", "apply", "--patch", files["patch"], "--if-match", rev]) == EXIT_CONFLICT

    def test_apply_test_failure_is_conflict(self, workdir, factory, populated_snapshot):
        db = _seed_db(workdir / "live.db", populated_snapshot)
        guard = [{"op": "test", "path": f"/tasks/{factory.uuid(1)}/etag", "value": 42}]
        (workdir / "guard.patch").write_text(json.dumps(guard), encoding="utf-8")

        assert main(["--db", db, "patch", "apply", "--patch", "guard.patch"]) == EXIT_CONFLICT

    def test_rebase(self, workdir, factory, files, populated_snapshot, capsys):
        main(["patch", "create", "--from", files["base"], "--to", files["target"], "--out", files["patch"]])
        capsys.readouterr()
        new_base = populated_snapshot.clone()
        new_base.tasks[factory.uuid(6)] = factory.task("T-00005", "theirs")
        new_base_path = _write_stamped(new_base, workdir / "new-base.json")

        code = main(["patch", "rebase", "--patch", files["patch"], "--old-base", files["base"],
                     "--new-base", new_base_path, "--out", "rebased.patch", "--json"])

        assert code == EXIT_OK
        payload = _read_json(capsys)
        assert payload["code_rewrites"] == {
            "tasks": [{"uuid": factory.uuid(5), "from": "T-00005", "to": "T-00006"}]
        }
        assert (workdir / "rebased.patch").exists()

    def test_summarize(self, files, capsys):
        main(["patch", "create", "--from", files["base"], "--to", files["target"], "--out", files["patch"]])
        capsys.readouterr()

        assert main(["patch", "summarize", "--patch", files["patch"]]) == EXIT_OK
        assert capsys.readouterr().out.strip() == "1 task added."

        assert main(["patch", "summarize", "--patch", files["patch"], "--base", files["base"],
                     "--format", "markdown"]) == EXIT_OK
        assert "| task | add | T-00005 | five |" in capsys.readouterr().out

    def test_missing_patch_file(self, files):
        assert main(["patch", "summarize", "--patch", "absent.patch"]) == EXIT_ERROR


class TestMain:
    """Tests for argument handling in main()."""

    def test_no_command(self, capsys):
        assert main([]) == EXIT_ERROR
        assert "No command specified" in capsys.readouterr().err

    def test_group_without_command(self):
        assert main(["patch"]) == EXIT_ERROR

    def test_missing_config_file(self):
        assert main(["--config", "absent.yaml", "state", "verify", "x.json"]) == EXIT_ERROR
