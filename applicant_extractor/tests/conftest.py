"""
Test fixtures and utilities for applicant extractor tests
"""

import json
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Any

import pytest

from events.emitter import ProgressEventEmitter
from models import ApplicantRef, DownloadResult, ProfileData
from orchestration.orchestrator import ExtractionOrchestrator
from orchestration.retry_policy import RetryPolicy


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path)


@pytest.fixture
def mock_env(monkeypatch):
    """Set up mock environment variables"""
    env_vars = {
        "LINKEDIN_EMAIL": "test@example.com",
        "LINKEDIN_PASSWORD": "test_password",
        "BATCH_SIZE": "4",
        "MAX_ITEMS": "40",
        "COOLDOWN_MS": "1500",
        "MAX_RETRIES": "4",
        "RETRY_BASE_DELAY_MS": "250",
        "ITEM_TIMEOUT_SECONDS": "12",
        "FETCH_PROFILES": "true",
        "DOWNLOAD_CVS": "false",
        "HEADLESS": "true",
        "LOG_LEVEL": "INFO",
    }

    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)

    return env_vars


def make_refs(count: int) -> list[ApplicantRef]:
    return [
        ApplicantRef(
            profile_id=f"applicant-{i}",
            name=f"Applicant {i}",
            profile_url=f"https://www.linkedin.com/in/applicant-{i}/",
        )
        for i in range(1, count + 1)
    ]


class FakeSource:
    def __init__(self, refs: list[ApplicantRef], error: Exception | None = None):
        self.refs = refs
        self.error = error
        self.calls: list[tuple[str, str | None]] = []

    def list_applicants(self, job_id, applicant_view_id=None):
        self.calls.append((job_id, applicant_view_id))
        if self.error is not None:
            raise self.error
        return list(self.refs)


class ScriptedFetcher:
    """
    Profile fetcher driven by a script of failures per profile id.

    ``failures[profile_id]`` is a list of exceptions raised on successive calls
    before the fetch succeeds.
    """

    def __init__(self, failures: dict[str, list[Exception]] | None = None, hook=None):
        self.failures = {key: list(value) for key, value in (failures or {}).items()}
        self.calls: list[str] = []
        self.hook = hook

    def fetch_profile(self, ref: ApplicantRef) -> ProfileData:
        self.calls.append(ref.profile_id)
        if self.hook is not None:
            self.hook(ref)
        pending = self.failures.get(ref.profile_id)
        if pending:
            raise pending.pop(0)
        return ProfileData(profile_id=ref.profile_id, name=ref.name, headline="Engineer")


class FakeCVDownloader:
    def __init__(self, results: dict[str, Any] | None = None):
        self.results = results or {}
        self.calls: list[str] = []

    def download_cv(self, ref: ApplicantRef) -> DownloadResult:
        self.calls.append(ref.profile_id)
        outcome = self.results.get(ref.profile_id)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if outcome else None
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, DownloadResult):
            return outcome
        return DownloadResult(
            success=True, file_path=f"/tmp/{ref.profile_id}.pdf", message="ok", file_size=10
        )


class EventRecorder:
    """Records every event in dispatch order."""

    def __init__(self, emitter: ProgressEventEmitter):
        self.events: list[tuple[str, dict[str, Any]]] = []
        self._lock = threading.Lock()
        emitter.subscribe_all(self)

    def __call__(self, name: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self.events.append((name, payload))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def payloads(self, name: str) -> list[dict[str, Any]]:
        return [payload for event, payload in self.events if event == name]


def no_sleep(_seconds: float) -> None:
    return None


def fast_policy(max_retries: int = 3, **kwargs) -> RetryPolicy:
    return RetryPolicy(max_retries=max_retries, base_delay=0, sleep_fn=no_sleep, **kwargs)


@pytest.fixture
def make_orchestrator():
    """Factory returning (orchestrator, recorder) wired with fast fakes."""

    def _make(
        source,
        fetcher=None,
        cv_downloader=None,
        session=None,
        max_retries: int = 3,
        sleep_fn=no_sleep,
    ):
        emitter = ProgressEventEmitter()
        recorder = EventRecorder(emitter)
        orchestrator = ExtractionOrchestrator(
            source=source,
            profile_fetcher=fetcher if fetcher is not None else ScriptedFetcher(),
            cv_downloader=cv_downloader,
            session=session,
            emitter=emitter,
            retry_policy=fast_policy(max_retries),
            sleep_fn=sleep_fn,
        )
        return orchestrator, recorder

    return _make


@pytest.fixture
def applicants_file(temp_dir):
    """Exported applicant list with recorded profiles and one CV file"""
    cv_path = temp_dir / "cv-ada.pdf"
    cv_path.write_bytes(b"%PDF-1.4 fake cv")
    data = {
        "applicants": [
            {
                "profileId": "ada-lovelace",
                "name": "Ada Lovelace",
                "profileUrl": "https://www.linkedin.com/in/ada-lovelace/",
                "headline": "Analyst",
                "cvPath": "cv-ada.pdf",
                "profile": {"headline": "Analytical Engine Programmer", "skills": ["math"]},
            },
            {
                "profileUrl": "https://www.linkedin.com/in/grace-hopper/",
                "name": "Grace Hopper",
                "profile": {"headline": "Rear Admiral", "location": "Arlington"},
            },
            {
                "profileId": "alan-turing",
                "name": "Alan Turing",
                "profile": {"headline": "Mathematician"},
            },
        ]
    }
    path = temp_dir / "applicants.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)
    return path
