"""Tests for language, project and branch detection."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from ziit_watcher import detection
from ziit_watcher.detection import (
    detect_branch,
    detect_language,
    detect_project,
    extract_project_from_remote_url,
)


@pytest.mark.parametrize(
    "path,expected",
    [
        ("/p/src/main.rs", "Rust"),
        ("/p/app.TSX", "TSX"),
        ("/p/setup.py", "Python"),
        ("/p/README.md", "Markdown"),
        ("/p/docker-compose.yml", "Docker Compose"),
        ("/p/docker-compose.prod.yaml", "Docker Compose"),
        ("/p/config.yaml", "YAML"),
        ("/p/Makefile", None),
        ("/p/file.unknownext", None),
        (None, None),
    ],
)
def test_detect_language(path: str, expected: str) -> None:
    assert detect_language(path) == expected


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://github.com/user/my-project.git", "my-project"),
        ("https://github.com/user/my-project", "my-project"),
        ("git@github.com:user/my-project.git", "my-project"),
        ("ssh://git@host:2222/group/sub/repo.git", "repo"),
        ("https://github.com/user/repo/", "repo"),
    ],
)
def test_extract_project_from_remote_url(url: str, expected: str) -> None:
    assert extract_project_from_remote_url(url) == expected


def _completed(stdout: str, returncode: int = 0) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=["git"], returncode=returncode, stdout=stdout, stderr="")


def test_detect_project_prefers_remote_name(tmp_path: Path) -> None:
    with patch("ziit_watcher.detection.subprocess.run", return_value=_completed("git@host:me/remote-name.git\n")):
        assert detect_project(str(tmp_path / "a.py")) == "remote-name"


def test_detect_project_falls_back_to_repo_root(tmp_path: Path) -> None:
    responses = [_completed("", returncode=1), _completed(str(tmp_path / "root-name") + "\n")]
    with patch("ziit_watcher.detection.subprocess.run", side_effect=responses):
        assert detect_project(str(tmp_path / "a.py")) == "root-name"


def test_detect_project_uses_markers_without_git(tmp_path: Path) -> None:
    project = tmp_path / "markerproj"
    (project / "src" / "deep").mkdir(parents=True)
    (project / "Cargo.toml").write_text("[package]\n", encoding="utf-8")
    with patch("ziit_watcher.detection.subprocess.run", side_effect=FileNotFoundError("git")):
        assert detect_project(str(project / "src" / "deep" / "lib.rs")) == "markerproj"


def test_detect_project_falls_back_to_parent_dir(tmp_path: Path) -> None:
    with patch.object(detection, "_run_git", return_value=None), patch.object(
        detection, "_has_project_markers", return_value=False
    ):
        assert detect_project(str(tmp_path / "plain" / "notes.txt")) == "plain"


def test_detect_project_none() -> None:
    assert detect_project(None) is None


def test_detect_branch(tmp_path: Path) -> None:
    with patch("ziit_watcher.detection.subprocess.run", return_value=_completed("feature/x\n")) as run:
        assert detect_branch(str(tmp_path / "a.py")) == "feature/x"
    assert run.call_args[0][0] == ["git", "rev-parse", "--abbrev-ref", "HEAD"]
    assert run.call_args[1]["timeout"] == detection.GIT_TIMEOUT_SECONDS


def test_detect_branch_detached_head(tmp_path: Path) -> None:
    with patch("ziit_watcher.detection.subprocess.run", return_value=_completed("HEAD\n")):
        assert detect_branch(str(tmp_path / "a.py")) is None


def test_git_timeout_is_not_fatal(tmp_path: Path) -> None:
    with patch(
        "ziit_watcher.detection.subprocess.run",
        side_effect=subprocess.TimeoutExpired(cmd="git", timeout=2),
    ):
        assert detect_branch(str(tmp_path / "a.py")) is None


def test_run_git_uses_containing_directory(tmp_path: Path) -> None:
    target = tmp_path / "pkg" / "mod.py"
    target.parent.mkdir()
    target.write_text("", encoding="utf-8")
    run = MagicMock(return_value=_completed("main"))
    with patch("ziit_watcher.detection.subprocess.run", run):
        detect_branch(str(target))
    assert run.call_args[1]["cwd"] == str(target.parent)
