"""
In-memory filtering and sorting of tasks, as applied by the board view.
"""
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional, Tuple

from .schema import Task, parse_iso, utc_now

FAR_FUTURE = datetime(9999, 12, 31, tzinfo=timezone.utc)


class SortBy(Enum):
    CREATED_AT = "created_at"
    DUE_DATE = "due_date"
    PRIORITY = "priority"
    TITLE = "title"
    UPDATED_AT = "updated_at"


class SortOrder(Enum):
    ASC = "asc"
    DESC = "desc"


class QuickFilter(Enum):
    ALL = "all"
    TODAY = "today"
    THIS_WEEK = "this_week"
    THIS_MONTH = "this_month"
    OVERDUE = "overdue"
    NO_DUE_DATE = "no_due_date"


@dataclass(frozen=True)
class FilterOptions:
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    sort_by: SortBy = SortBy.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC
    quick_filter: QuickFilter = QuickFilter.ALL

    def with_quick_filter(self, quick: QuickFilter, now: Optional[datetime] = None) -> "FilterOptions":
        date_from, date_to = quick_filter_range(quick, parse_iso(now))
        return replace(self, quick_filter=quick, date_from=date_from, date_to=date_to)

    def with_date_range(self, date_from: Optional[datetime], date_to: Optional[datetime]) -> "FilterOptions":
        """A custom range resets the quick filter. Naive bounds are taken as UTC."""
        return replace(
            self, date_from=parse_iso(date_from), date_to=parse_iso(date_to), quick_filter=QuickFilter.ALL
        )


def _start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def _end_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=23, minute=59, second=59, microsecond=999999)


def quick_filter_range(quick: QuickFilter, now: Optional[datetime] = None) -> Tuple[Optional[datetime], Optional[datetime]]:
    """The date range the filter panel shows for a quick filter."""
    now = now or utc_now()
    if quick == QuickFilter.TODAY:
        return _start_of_day(now), _end_of_day(now)
    if quick == QuickFilter.THIS_WEEK:
        return _start_of_day(now - timedelta(days=7)), _end_of_day(now)
    if quick == QuickFilter.THIS_MONTH:
        return _start_of_day(now - timedelta(days=30)), _end_of_day(now)
    if quick == QuickFilter.OVERDUE:
        return None, _start_of_day(now)
    return None, None


def active_filter_count(filters: FilterOptions) -> int:
    count = 0
    if filters.date_from or filters.date_to:
        count += 1
    if filters.sort_by != SortBy.CREATED_AT or filters.sort_order != SortOrder.DESC:
        count += 1
    if filters.quick_filter != QuickFilter.ALL:
        count += 1
    return count


def _task_date(task: Task) -> datetime:
    return task.due_date or task.created_at


def _matches_quick(task: Task, quick: QuickFilter, now: datetime) -> bool:
    task_date = _task_date(task)
    if quick == QuickFilter.TODAY:
        return task_date.date() == now.date()
    if quick == QuickFilter.THIS_WEEK:
        return task_date >= now - timedelta(days=7)
    if quick == QuickFilter.THIS_MONTH:
        return task_date >= now - timedelta(days=30)
    if quick == QuickFilter.OVERDUE:
        return task.due_date is not None and task.due_date < now
    if quick == QuickFilter.NO_DUE_DATE:
        return task.due_date is None
    return True


def _sort_key(task: Task, sort_by: SortBy):
    if sort_by == SortBy.DUE_DATE:
        return task.due_date or FAR_FUTURE
    if sort_by == SortBy.PRIORITY:
        return task.priority.rank
    if sort_by == SortBy.TITLE:
        return task.title.lower()
    if sort_by == SortBy.UPDATED_AT:
        return task.updated_at
    return task.created_at


def filter_and_sort(tasks: List[Task], filters: FilterOptions, now: Optional[datetime] = None) -> List[Task]:
    """
    Apply the date range, then the quick filter, then a stable sort.

    A task's date is its due date, falling back to its creation time.
    """
    now = parse_iso(now) or utc_now()
    date_from, date_to = parse_iso(filters.date_from), parse_iso(filters.date_to)
    result = list(tasks)

    if date_from or date_to:
        result = [
            t for t in result
            if not (date_from and _task_date(t) < date_from)
            and not (date_to and _task_date(t) > date_to)
        ]

    if filters.quick_filter != QuickFilter.ALL:
        result = [t for t in result if _matches_quick(t, filters.quick_filter, now)]

    result.sort(
        key=lambda t: _sort_key(t, filters.sort_by),
        reverse=filters.sort_order == SortOrder.DESC,
    )
    return result
