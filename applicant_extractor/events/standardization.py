"""
Standardized payloads for extraction events.

Every payload carries an epoch-millisecond ``timestamp`` and uses the camelCase
field names the desktop UI listens for.
"""

from __future__ import annotations

import math
import re
import time
from typing import Any, Iterable

from models import ApplicantRef, DownloadResult, ErrorRecord, ItemResult, OperationSnapshot

# Checked in order; the first group with a keyword starting a word wins.
ERROR_CODE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("AUTH_ERROR", ("login", "auth")),
    ("NAVIGATION_ERROR", ("navigation", "page", "load")),
    ("TIMEOUT_ERROR", ("timeout", "timed out")),
    ("RATE_LIMIT_ERROR", ("rate", "limit")),
    ("SECURITY_CHECK_ERROR", ("captcha", "security", "verification")),
    ("DOWNLOAD_ERROR", ("download", "file")),
    ("PARSING_ERROR", ("parsing", "extract")),
)


def now_ms() -> int:
    return int(time.time() * 1000)


def map_error_to_code(error: Any) -> str:
    """Map an error or message to a standardized error code."""
    if error is None or str(error) == "":
        return "UNKNOWN_ERROR"

    text = str(error).lower()
    for code, keywords in ERROR_CODE_KEYWORDS:
        if any(re.search(rf"\b{re.escape(keyword)}", text) for keyword in keywords):
            return code
    return "GENERAL_ERROR"


def _percentage(current: int, total: int) -> int:
    if total <= 0:
        return 0
    return math.floor(current * 100 / total)


def _items(items: Iterable[ItemResult]) -> list[dict[str, Any]]:
    return [item.to_dict() for item in items]


def _errors(errors: Iterable[ErrorRecord]) -> list[dict[str, Any]]:
    return [err.to_dict() for err in errors]


def started_payload(job_id: str, estimated_total: int, run_id: str) -> dict[str, Any]:
    return {
        "runId": run_id,
        "jobId": job_id,
        "estimatedTotal": estimated_total,
        "timestamp": now_ms(),
    }


def progress_payload(snapshot: OperationSnapshot, item: ItemResult) -> dict[str, Any]:
    return {
        "current": snapshot.cursor,
        "total": snapshot.total_items,
        "percentage": snapshot.percentage,
        "currentApplicant": item.source_ref.label,
        "profileId": item.source_ref.profile_id,
        "success": item.success,
        "attempts": item.attempts,
        "timestamp": now_ms(),
    }


def batch_started_payload(
    job_id: str, batch_index: int, total_batches: int, batch_size: int
) -> dict[str, Any]:
    return {
        "batchId": f"{job_id}-{batch_index}",
        "batchIndex": batch_index,
        "totalBatches": total_batches,
        "batchSize": batch_size,
        "timestamp": now_ms(),
    }


def batch_completed_payload(
    job_id: str,
    batch_index: int,
    total_batches: int,
    processed: int,
    succeeded: int,
    failed: int,
) -> dict[str, Any]:
    return {
        "batchId": f"{job_id}-{batch_index}",
        "batchIndex": batch_index,
        "totalBatches": total_batches,
        "processedCount": processed,
        "successCount": succeeded,
        "failedCount": failed,
        "timestamp": now_ms(),
    }


def paused_payload(snapshot: OperationSnapshot, reason: str = "user_requested") -> dict[str, Any]:
    return {
        "current": snapshot.cursor,
        "total": snapshot.total_items,
        "percentage": snapshot.percentage,
        "pauseReason": reason,
        "timestamp": now_ms(),
    }


def resumed_payload(snapshot: OperationSnapshot) -> dict[str, Any]:
    return {
        "current": snapshot.cursor,
        "total": snapshot.total_items,
        "percentage": snapshot.percentage,
        "timestamp": now_ms(),
    }


def completed_payload(snapshot: OperationSnapshot) -> dict[str, Any]:
    return {
        "jobId": snapshot.target.job_id if snapshot.target else None,
        "applicants": _items(snapshot.processed_items),
        "errors": _errors(snapshot.errors),
        "total": len(snapshot.processed_items),
        "completionTime": int(snapshot.running_time_seconds() * 1000),
        "timestamp": now_ms(),
    }


def cancelled_payload(snapshot: OperationSnapshot) -> dict[str, Any]:
    payload = completed_payload(snapshot)
    payload["reason"] = "stopped"
    return payload


def error_payload(
    snapshot: OperationSnapshot, error: BaseException | str, context: str = ""
) -> dict[str, Any]:
    return {
        "error": str(error) or type(error).__name__,
        "errorCode": map_error_to_code(error),
        "context": context,
        "recoverable": False,
        "partial": {
            "count": len(snapshot.processed_items),
            "applicants": _items(snapshot.processed_items),
            "errors": _errors(snapshot.errors),
        },
        "timestamp": now_ms(),
    }


def cv_download_started_payload(ref: ApplicantRef) -> dict[str, Any]:
    return {
        "profileId": ref.profile_id,
        "profileName": ref.label,
        "timestamp": now_ms(),
    }


def cv_download_progress_payload(
    ref: ApplicantRef, attempt: int, max_attempts: int, error: BaseException | None = None
) -> dict[str, Any]:
    return {
        "profileId": ref.profile_id,
        "profileName": ref.label,
        "attempt": attempt,
        "maxAttempts": max_attempts,
        "percentage": _percentage(attempt, max_attempts),
        "lastError": str(error) if error else None,
        "timestamp": now_ms(),
    }


def cv_download_completed_payload(ref: ApplicantRef, result: DownloadResult) -> dict[str, Any]:
    return {
        "profileId": ref.profile_id,
        "profileName": ref.label,
        "filePath": result.file_path,
        "fileSize": result.file_size,
        "timestamp": now_ms(),
    }


def cv_download_error_payload(ref: ApplicantRef, error: BaseException | str) -> dict[str, Any]:
    return {
        "profileId": ref.profile_id,
        "profileName": ref.label,
        "error": str(error) or "Unknown error",
        "errorCode": map_error_to_code(error),
        "timestamp": now_ms(),
    }
