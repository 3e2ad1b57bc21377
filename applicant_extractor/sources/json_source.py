"""
Offline collaborators backed by an exported applicant list.

Lets the orchestrator run without a browser: applicant cards, profiles and CV
files all come from a JSON file written by an earlier extraction (or by hand).
"""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Any

from models import ApplicantRef, DownloadResult, ProfileData
from orchestration.errors import NavigationError, ProfileNotFoundError

logger = logging.getLogger(__name__)


class JsonApplicantSource:
    """
    Applicant list read from a JSON file.

    Accepted shapes: a list of applicant cards, ``{"applicants": [...]}``, or
    ``{"jobs": {"<job id>": [...]}}`` for files covering several postings.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def list_applicants(
        self, job_id: str, applicant_view_id: str | None = None
    ) -> list[ApplicantRef]:
        records = self._records(job_id)
        applicants = []
        for index, record in enumerate(records):
            if not isinstance(record, dict):
                raise NavigationError(f"Applicant #{index} in {self.path} is not an object")
            ref = ApplicantRef.from_dict(record)
            if not ref.profile_id:
                raise NavigationError(f"Applicant #{index} in {self.path} has no profile id")
            applicants.append(ref)
        logger.info("Loaded %s applicant(s) for job %s from %s", len(applicants), job_id, self.path)
        return applicants

    def _records(self, job_id: str) -> list[Any]:
        if not self.path.exists():
            raise NavigationError(f"Applicant file not found: {self.path}")
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise NavigationError(f"Applicant file is not valid JSON: {self.path}") from exc

        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            if isinstance(data.get("applicants"), list):
                return data["applicants"]
            jobs = data.get("jobs")
            if isinstance(jobs, dict):
                if job_id not in jobs:
                    raise NavigationError(f"Job {job_id} not found in {self.path}")
                if isinstance(jobs[job_id], list):
                    return jobs[job_id]
        raise NavigationError(f"Unrecognised applicant file structure: {self.path}")


class RecordedProfileFetcher:
    """Returns the ``profile`` block recorded with each applicant card."""

    def fetch_profile(self, ref: ApplicantRef) -> ProfileData:
        recorded = ref.extra.get("profile")
        if not isinstance(recorded, dict):
            raise ProfileNotFoundError(f"Profile not found for {ref.label}")
        data = {"profileId": ref.profile_id, "name": ref.name, **recorded}
        return ProfileData.from_dict(data)


class LocalCVDownloader:
    """Copies the file named by a card's ``cvPath`` into the download directory."""

    def __init__(self, download_dir: str | Path, base_dir: str | Path | None = None):
        self.download_dir = Path(download_dir)
        self.base_dir = Path(base_dir) if base_dir else None

    def download_cv(self, ref: ApplicantRef) -> DownloadResult:
        cv_path = ref.extra.get("cvPath")
        if not cv_path:
            return DownloadResult(success=False, message="No CV attached to application")

        source = Path(cv_path)
        if not source.is_absolute() and self.base_dir is not None:
            source = self.base_dir / source
        if not source.exists():
            return DownloadResult(success=False, message=f"CV file missing: {source}")

        self.download_dir.mkdir(parents=True, exist_ok=True)
        target = self.download_dir / f"{ref.profile_id}{source.suffix}"
        shutil.copyfile(source, target)
        return DownloadResult(
            success=True,
            file_path=str(target),
            message="Downloaded",
            file_size=target.stat().st_size,
        )
