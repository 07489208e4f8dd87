import json
import logging
import shutil
from pathlib import Path

import pytest

from captra.config import SEED_ENV
from captra.trace import load_signed_trace, load_trace
from cli import captra_cli

BASE_DIR = Path(__file__).resolve().parents[1]
EXAMPLE_MANIFEST = BASE_DIR / "fixtures" / "manifest.json"


@pytest.fixture(autouse=True)
def _isolated(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv(SEED_ENV, raising=False)
    yield
    log = logging.getLogger("captra")
    for h in list(log.handlers):
        if h.get_name() == "captra":
            log.removeHandler(h)
    log.setLevel(logging.NOTSET)


def _main(argv) -> int:
    with pytest.raises(SystemExit) as ei:
        captra_cli.main(argv)
    return ei.value.code


def _run_example(tmp_path: Path, *paths: str, extra=()) -> int:
    return _main(
        [
            "run",
            "--seed",
            "12345",
            "--manifest",
            str(EXAMPLE_MANIFEST),
            "--out",
            str(tmp_path / "out"),
            *extra,
            *paths,
        ]
    )


def test_keygen_writes_key_pair(tmp_path: Path, capsys) -> None:
    assert _main(["keygen", "--out", str(tmp_path / "keys")]) == 0

    out = capsys.readouterr().out.splitlines()
    assert out[0].startswith("public_key=")
    assert (tmp_path / "keys" / captra_cli.KEY_FILE).exists()
    pub = (tmp_path / "keys" / captra_cli.PUB_FILE).read_text(encoding="utf-8").strip()
    assert out[0] == f"public_key={pub}"


def test_keygen_refuses_to_overwrite(tmp_path: Path, capsys) -> None:
    assert _main(["keygen"]) == 0
    before = (tmp_path / captra_cli.KEY_FILE).read_bytes()

    assert _main(["keygen"]) == 2
    assert (tmp_path / captra_cli.KEY_FILE).read_bytes() == before
    assert "--force" in capsys.readouterr().err

    assert _main(["keygen", "--force"]) == 0
    assert (tmp_path / captra_cli.KEY_FILE).read_bytes() != before


def test_run_prints_decisions_and_writes_exports(tmp_path: Path, capsys) -> None:
    code = _run_example(tmp_path, "./workspace/config.toml", "/etc/passwd", "")

    assert code == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "ALLOWED ./workspace/config.toml"
    assert lines[1] == "DENIED /etc/passwd"
    assert lines[2] == "ERROR "
    assert lines[3].startswith("run_id=captra-run-12345 manifest_hash=")
    assert lines[-1] == str((tmp_path / "out" / captra_cli.SIGNED_FILE).resolve())

    out_dir = tmp_path / "out"
    assert len(load_trace(out_dir / captra_cli.TRACE_FILE)) == 2
    signed = load_signed_trace(out_dir / captra_cli.SIGNED_FILE)
    assert signed.run_id == "captra-run-12345"
    # ephemeral key: public half lands beside the export
    assert (out_dir / captra_cli.PUB_FILE).exists()


def test_run_then_verify_round_trip(tmp_path: Path, capsys) -> None:
    assert _main(["keygen"]) == 0
    assert _run_example(tmp_path, "./workspace/a", extra=["--key", captra_cli.KEY_FILE]) == 0
    assert not (tmp_path / "out" / captra_cli.PUB_FILE).exists()
    capsys.readouterr()

    signed = str(tmp_path / "out" / captra_cli.SIGNED_FILE)
    code = _main(
        [
            "verify",
            signed,
            "--public-key",
            captra_cli.PUB_FILE,
            "--manifest",
            str(EXAMPLE_MANIFEST),
        ]
    )

    out = capsys.readouterr().out
    assert code == 0
    assert "Signature: OK" in out
    assert "Manifest: OK" in out
    assert "Events: OK (count=1)" in out
    assert out.splitlines()[-1] == "OK"


def test_verify_json_summary(tmp_path: Path, capsys) -> None:
    assert _run_example(tmp_path, "./workspace/a", "./workspace/b") == 0
    capsys.readouterr()
    out_dir = tmp_path / "out"

    code = _main(
        [
            "verify",
            str(out_dir / captra_cli.SIGNED_FILE),
            "--public-key",
            str(out_dir / captra_cli.PUB_FILE),
            "--json",
        ]
    )

    summary = json.loads(capsys.readouterr().out)
    assert code == 0
    assert summary["events"] == 2
    assert summary["manifest"]["checked"] is False


def test_verify_detects_tampering(tmp_path: Path, capsys) -> None:
    assert _run_example(tmp_path, "./workspace/a", "/etc/passwd") == 0
    out_dir = tmp_path / "out"
    signed_path = out_dir / captra_cli.SIGNED_FILE

    doc = json.loads(signed_path.read_text(encoding="utf-8"))
    doc["trace_json"] = doc["trace_json"].replace('"outcome": false', '"outcome": true')
    signed_path.write_text(json.dumps(doc), encoding="utf-8")
    capsys.readouterr()

    code = _main(["verify", str(signed_path), "--public-key", str(out_dir / captra_cli.PUB_FILE)])

    out = capsys.readouterr().out
    assert code == 1
    assert "Signature: FAIL" in out
    assert out.splitlines()[-1] == "FAIL"


def test_verify_detects_policy_substitution(tmp_path: Path, capsys) -> None:
    assert _run_example(tmp_path, "./workspace/a") == 0
    out_dir = tmp_path / "out"
    other = tmp_path / "other.json"
    doc = json.loads(EXAMPLE_MANIFEST.read_text(encoding="utf-8"))
    doc["capabilities"]["fs"]["read"] = ["./**"]
    other.write_text(json.dumps(doc), encoding="utf-8")
    capsys.readouterr()

    code = _main(
        [
            "verify",
            str(out_dir / captra_cli.SIGNED_FILE),
            "--public-key",
            str(out_dir / captra_cli.PUB_FILE),
            "--manifest",
            str(other),
        ]
    )

    assert code == 1
    assert "Manifest: FAIL" in capsys.readouterr().out


def test_verify_missing_file_is_env_error(tmp_path: Path, capsys) -> None:
    (tmp_path / "k.pub").write_text("AAAA", encoding="utf-8")

    code = _main(["verify", str(tmp_path / "missing.json"), "--public-key", "k.pub"])

    assert code == 2
    assert "missing.json" in capsys.readouterr().err


def test_run_rejects_bad_manifest(tmp_path: Path, capsys) -> None:
    bad = tmp_path / "bad.json"
    bad.write_text(
        json.dumps(
            {
                "plugin": "",
                "version": "0.1",
                "capabilities": {"fs": {"read": []}},
                "issued_by": "dev",
            }
        ),
        encoding="utf-8",
    )

    code = _main(["run", "--seed", "1", "--manifest", str(bad), "./workspace/a"])

    assert code == 2
    assert "manifest rejected" in capsys.readouterr().err


def test_run_without_seed_is_config_error(tmp_path: Path, capsys) -> None:
    code = _main(["run", "--manifest", str(EXAMPLE_MANIFEST)])

    assert code == 2
    assert "no seed" in capsys.readouterr().err


def test_run_reads_config_file_and_env_seed(tmp_path: Path, capsys, monkeypatch) -> None:
    shutil.copy(EXAMPLE_MANIFEST, tmp_path / "manifest.json")
    (tmp_path / "captra.toml").write_text(
        'seed = 5\nmanifest = "manifest.json"\n\n[trace]\nout_dir = "runs"\n',
        encoding="utf-8",
    )
    monkeypatch.setenv(SEED_ENV, "77")

    assert _main(["run", "./workspace/a"]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines[1].startswith("run_id=captra-run-77 ")
    assert (tmp_path / "runs" / captra_cli.SIGNED_FILE).exists()


def test_seed_flag_beats_config(tmp_path: Path, capsys, monkeypatch) -> None:
    shutil.copy(EXAMPLE_MANIFEST, tmp_path / "manifest.json")
    (tmp_path / "captra.toml").write_text('seed = 5\nmanifest = "manifest.json"\n', encoding="utf-8")

    assert _main(["run", "--seed", "6"]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines[0].startswith("run_id=captra-run-6 ")


def test_run_echoes_undecodable_paths_escaped(tmp_path: Path, capsys) -> None:
    code = _run_example(tmp_path, "./workspace/\udcff")

    assert code == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "ERROR ./workspace/\\udcff"
