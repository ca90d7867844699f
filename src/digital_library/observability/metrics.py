"""Custom metrics for the Digital Library."""

import logfire

loan_events = logfire.metric_counter(
    "library.loans.events", description="Loan lifecycle events (borrow/return/overdue)"
)

annotation_events = logfire.metric_counter(
    "library.annotations.events",
    description="Annotation lifecycle events (create/like/unlike/reply/delete)",
)


def record_loan_event(event_type: str, count: int = 1) -> None:
    """Record a borrow, return or overdue transition."""
    if count > 0:
        loan_events.add(count, {"event_type": event_type})


def record_annotation_event(event_type: str, annotation_type: str) -> None:
    """Record an annotation lifecycle event."""
    annotation_events.add(1, {"event_type": event_type, "annotation_type": annotation_type})
