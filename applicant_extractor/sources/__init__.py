"""Applicant sources and per-applicant collaborators."""

from .json_source import JsonApplicantSource, LocalCVDownloader, RecordedProfileFetcher

__all__ = ["JsonApplicantSource", "LocalCVDownloader", "RecordedProfileFetcher"]
