"""
End-to-end tests for the command line entry point
"""

import json

import pytest

from cli.main import main


@pytest.fixture
def cli_env(monkeypatch, temp_dir):
    """Point every output directory at the temp dir and keep runs fast"""
    monkeypatch.setenv("LOG_DIR", str(temp_dir / "logs"))
    monkeypatch.setenv("DOWNLOAD_DIR", str(temp_dir / "cvs"))
    monkeypatch.setenv("EXPORT_DIR", str(temp_dir / "exports"))
    monkeypatch.setenv("BATCH_SIZE", "2")
    monkeypatch.setenv("MAX_ITEMS", "10")
    monkeypatch.setenv("COOLDOWN_MS", "0")
    monkeypatch.setenv("MAX_RETRIES", "2")
    monkeypatch.setenv("RETRY_BASE_DELAY_MS", "0")
    monkeypatch.setenv("DOWNLOAD_CVS", "false")
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    return temp_dir


def test_completed_run_exports_results(cli_env, applicants_file, capsys):
    exit_code = main(
        [
            "--job-id",
            "job-1",
            "--applicants",
            str(applicants_file),
            "--download-cvs",
            "--export",
            "results.json",
        ]
    )

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "[1/3] Ada Lovelace: ok" in out
    assert "[3/3] Alan Turing: failed" in out
    assert "Extraction completed" in out

    export_path = cli_env / "exports" / "results.json"
    with open(export_path, encoding="utf-8") as f:
        document = json.load(f)
    assert document["jobId"] == "job-1"
    assert [item["success"] for item in document["items"]] == [True, False, False]
    assert document["items"][0]["cvDownload"]["filePath"].endswith("ada-lovelace.pdf")
    assert (cli_env / "cvs" / "ada-lovelace.pdf").exists()
    assert {err["errorKind"] for err in document["errors"]} == {"download"}


def test_completed_run_without_cvs(cli_env, applicants_file):
    export_path = cli_env / "out" / "results.xlsx"

    exit_code = main(
        ["--job-id", "job-1", "--applicants", str(applicants_file), "--export", str(export_path)]
    )

    assert exit_code == 0
    assert export_path.exists()
    assert not (cli_env / "cvs").exists()


def test_max_items_override_limits_run(cli_env, applicants_file, capsys):
    exit_code = main(
        ["--job-id", "job-1", "--applicants", str(applicants_file), "--max-items", "1"]
    )

    assert exit_code == 0
    assert "Processed 1/1" in capsys.readouterr().out


def test_invalid_batch_size_exits_with_config_error(cli_env, applicants_file, capsys):
    exit_code = main(
        ["--job-id", "job-1", "--applicants", str(applicants_file), "--batch-size", "0"]
    )

    assert exit_code == 1
    assert "batch" in capsys.readouterr().err.lower()


def test_invalid_environment_exits_before_running(cli_env, applicants_file, monkeypatch, capsys):
    monkeypatch.setenv("MAX_RETRIES", "0")

    exit_code = main(["--job-id", "job-1", "--applicants", str(applicants_file)])

    assert exit_code == 1
    assert "MAX_RETRIES" in capsys.readouterr().err


def test_missing_profile_ends_run_in_error(cli_env, temp_dir, capsys):
    path = temp_dir / "partial.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(
            [
                {"profileId": "p1", "name": "First", "profile": {"headline": "Engineer"}},
                {"profileId": "p2", "name": "Second"},
                {"profileId": "p3", "name": "Third", "profile": {}},
            ],
            f,
        )

    exit_code = main(["--job-id", "job-1", "--applicants", str(path), "--export", "partial.json"])

    assert exit_code == 2
    assert "Fatal error: Profile not found for Second" in capsys.readouterr().out
    with open(cli_env / "exports" / "partial.json", encoding="utf-8") as f:
        document = json.load(f)
    assert [item["sourceRef"]["profileId"] for item in document["items"]] == ["p1"]
    assert document["errors"][0]["recoverable"] is False


def test_missing_applicant_file_ends_run_in_error(cli_env, temp_dir):
    exit_code = main(["--job-id", "job-1", "--applicants", str(temp_dir / "missing.json")])

    assert exit_code == 2
