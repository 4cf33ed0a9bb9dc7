from clipworks.models.work_item import STATUS_COMPLETED, STATUS_FAILED, WorkItem
from clipworks.schemas.jobs import JobOutcome, JobStatus


def _preview_url(item: WorkItem) -> str | None:
    return (item.result or {}).get("preview_url")


def outcome_for(item: WorkItem, poll_url: str) -> JobOutcome:
    """Answer for a request whose fingerprint already has a work item.

    Queued and processing items both report ``processing``; failed items are
    reported as failed and are not retried.
    """
    if item.status == STATUS_COMPLETED and item.output_url:
        return JobOutcome(
            status="completed",
            fingerprint=item.fingerprint,
            asset_url=item.output_url,
            preview_url=_preview_url(item),
        )
    if item.status == STATUS_FAILED:
        return JobOutcome(
            status="failed",
            fingerprint=item.fingerprint,
            error=item.error_message or "Processing failed",
        )
    return JobOutcome(status="processing", fingerprint=item.fingerprint, poll_url=poll_url)


def status_for(fingerprint: str, item: WorkItem | None) -> JobStatus:
    if item is None:
        return JobStatus(status="not_found", fingerprint=fingerprint)
    if item.status == STATUS_COMPLETED:
        return JobStatus(
            status="completed",
            fingerprint=fingerprint,
            asset_url=item.output_url,
            preview_url=_preview_url(item),
        )
    if item.status == STATUS_FAILED:
        return JobStatus(status="failed", fingerprint=fingerprint, error=item.error_message)
    return JobStatus(status="processing", fingerprint=fingerprint)
