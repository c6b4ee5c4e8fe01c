import pytest

from automator.models import DelayBounds, Job, JobStatus, LogEntry, LogLevel, Progress, parse_items, preview


def test_parse_items_drops_blank_lines():
    text = "first prompt\n\n   \n  second prompt  \r\nthird"
    assert parse_items(text) == ["first prompt", "second prompt", "third"]


def test_preview_truncates_long_items():
    assert preview("short") == "short"
    assert preview("x" * 61) == "x" * 60 + "..."


def test_job_advance_stops_at_end():
    job = Job(items=("a", "b"), delay_bounds=DelayBounds(5, 10))

    job.advance()
    job.advance()

    assert job.cursor == 2
    assert job.remaining == 0
    with pytest.raises(ValueError):
        job.advance()
    assert job.cursor == 2


def test_progress_percentage():
    assert Progress(cursor=1, total=3, status=JobStatus.RUNNING).percentage == 33
    assert Progress(cursor=0, total=0, status=JobStatus.IDLE).percentage == 0


@pytest.mark.parametrize(
    "status,active",
    [
        (JobStatus.IDLE, False),
        (JobStatus.RUNNING, True),
        (JobStatus.PAUSED, True),
        (JobStatus.STOPPING, True),
        (JobStatus.COMPLETED, False),
        (JobStatus.FAILED, False),
    ],
)
def test_active_statuses(status, active):
    assert status.is_active is active


def test_log_entry_to_dict():
    from datetime import datetime, timezone

    entry = LogEntry(datetime(2024, 5, 1, tzinfo=timezone.utc), LogLevel.SUCCESS, "done")
    assert entry.to_dict() == {
        "timestamp": "2024-05-01T00:00:00+00:00",
        "level": "success",
        "message": "done",
    }
