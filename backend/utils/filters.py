from typing import List

from schemas.complaints import ComplaintFilters, ComplaintView

PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}
STATUS_ORDER = {"pending": 3, "resolved": 2, "rejected": 1}


def filter_complaints(complaints: List[ComplaintView], filters: ComplaintFilters) -> List[ComplaintView]:
    term = filters.search_term.strip().lower()

    def matches(complaint: ComplaintView) -> bool:
        if term:
            haystack = (
                complaint.title,
                complaint.description,
                complaint.offender_plate,
                complaint.reported_by_name or "",
            )
            if not any(term in field.lower() for field in haystack):
                return False
        if filters.status != "all" and complaint.status.value != filters.status:
            return False
        if filters.priority != "all" and complaint.priority.value != filters.priority:
            return False
        if filters.category != "all" and complaint.category.value != filters.category:
            return False
        return True

    return [c for c in complaints if matches(c)]


def sort_complaints(
    complaints: List[ComplaintView], sort_by: str = "date", sort_order: str = "desc"
) -> List[ComplaintView]:
    if sort_by == "priority":
        key = lambda c: PRIORITY_ORDER.get(c.priority.value, 0)  # noqa: E731
    elif sort_by == "status":
        key = lambda c: STATUS_ORDER.get(c.status.value, 0)  # noqa: E731
    elif sort_by == "date":
        key = lambda c: c.date_reported.timestamp() if c.date_reported else 0.0  # noqa: E731
    else:
        key = lambda c: str(getattr(c, sort_by, "") or "")  # noqa: E731
    return sorted(complaints, key=key, reverse=sort_order != "asc")


def apply_filters(complaints: List[ComplaintView], filters: ComplaintFilters) -> List[ComplaintView]:
    return sort_complaints(filter_complaints(complaints, filters), filters.sort_by, filters.sort_order)
