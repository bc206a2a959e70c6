"""
Task Validator - Input normalization and the ordered date/status rules
applied before a task is written to the store.
"""

import logging
import math
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from dateutil import parser as date_parser

from database import utc_now
from errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)

PRIORITIES = ('High', 'Medium', 'Low')
STATUSES = ('Todo', 'In Progress', 'Completed', 'Expired')

# camelCase names used by the web client -> column names
FIELD_ALIASES = {
    'startDate': 'start_date',
    'dueDate': 'due_date',
    'estimatedTime': 'estimated_time',
    'userId': 'user_id',
}

EDITABLE_FIELDS = ('name', 'description', 'priority', 'status', 'estimated_time', 'start_date', 'due_date')
TEMPORAL_FIELDS = ('status', 'start_date', 'due_date')


class ValidationRule(NamedTuple):
    """A named predicate over a task state; ``check`` returns True when the state passes."""
    name: str
    message: str
    check: Callable[[Dict[str, Any], datetime], bool]


def _dates_present(task, now):
    return task.get('start_date') is not None and task.get('due_date') is not None


def _due_after_start(task, now):
    return task['due_date'] > task['start_date']


def _todo_starts_in_future(task, now):
    return task.get('status') != 'Todo' or task['start_date'] > now


def _in_progress_started(task, now):
    return task.get('status') != 'In Progress' or task['start_date'] <= now


def _completed_in_past(task, now):
    return task.get('status') != 'Completed' or (task['start_date'] <= now and task['due_date'] <= now)


def _expired_due_in_past(task, now):
    return task.get('status') != 'Expired' or task['due_date'] < now


# Evaluated in order; the first failing rule is reported.
TASK_RULES: List[ValidationRule] = [
    ValidationRule('dates_required', 'Both startDate and dueDate are required.', _dates_present),
    ValidationRule('due_after_start', 'dueDate must be after startDate.', _due_after_start),
    ValidationRule('todo_starts_in_future',
                   'startDate must be in the future for status "Todo".', _todo_starts_in_future),
    ValidationRule('in_progress_started',
                   'startDate must be today or in the past for status "In Progress".', _in_progress_started),
    ValidationRule('completed_in_past',
                   'startDate and dueDate must be in the past for status "Completed".', _completed_in_past),
    ValidationRule('expired_due_in_past',
                   'dueDate must be in the past for status "Expired".', _expired_due_in_past),
]

UNIQUE_NAME_RULE = 'unique_name'
UNIQUE_NAME_MESSAGE = 'Task with the same name already exists for this user.'


def first_violation(task: Dict[str, Any], now: datetime,
                    rules: List[ValidationRule] = None) -> Optional[ValidationRule]:
    """Return the first rule ``task`` violates, or None if it passes them all."""
    for rule in (TASK_RULES if rules is None else rules):
        if not rule.check(task, now):
            return rule
    return None


def parse_datetime(value: Any, field: str) -> datetime:
    """
    Parse an API timestamp into a naive UTC datetime.

    Accepts datetime/date objects and ISO-8601 strings. Values carrying an
    offset are converted to UTC; sub-second precision is dropped.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        try:
            parsed = date_parser.isoparse(value.strip())
        except (ValueError, OverflowError):
            raise ValidationError(f'{field} is not a valid ISO-8601 date.')
    else:
        raise ValidationError(f'{field} is not a valid ISO-8601 date.')

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    # the store keeps whole seconds
    return parsed.replace(microsecond=0)


def estimate_hours(start_date: datetime, due_date: datetime) -> int:
    """Hours between the two dates, rounded up."""
    return math.ceil((due_date - start_date).total_seconds() / 3600)


def normalize_task_input(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Map client field names to column names, drop unknown fields and check
    types/enums. ``partial`` is used for updates, where ``name`` is optional.
    """
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object.')

    fields = {}
    for key, value in data.items():
        column = FIELD_ALIASES.get(key, key)
        if column in EDITABLE_FIELDS:
            fields[column] = value

    if 'name' in fields or not partial:
        name = fields.get('name')
        if not isinstance(name, str) or not name.strip():
            raise ValidationError('Task name is required.')
        fields['name'] = name.strip()

    if 'priority' in fields and fields['priority'] not in PRIORITIES:
        raise ValidationError(f"Invalid priority: {fields['priority']}. Must be one of {', '.join(PRIORITIES)}.")

    if 'status' in fields and fields['status'] not in STATUSES:
        raise ValidationError(f"Invalid status: {fields['status']}. Must be one of {', '.join(STATUSES)}.")

    for field, label in (('start_date', 'startDate'), ('due_date', 'dueDate')):
        if field in fields:
            if fields[field] in (None, ''):
                del fields[field]
            else:
                fields[field] = parse_datetime(fields[field], label)

    if 'estimated_time' in fields:
        estimated = fields['estimated_time']
        if estimated is None:
            del fields['estimated_time']
        elif isinstance(estimated, bool) or not isinstance(estimated, (int, float)) or estimated < 0:
            raise ValidationError('estimatedTime must be a non-negative number of hours.')

    return fields


class TaskValidator:
    """
    Applies ``TASK_RULES`` and the per-user name uniqueness check.

    ``find_task_by_name(user_id, name)`` is the task store lookup and
    ``clock`` returns the current naive-UTC time.
    """

    def __init__(self, find_task_by_name: Callable[[int, str], Optional[Dict[str, Any]]],
                 clock: Callable[[], datetime] = utc_now):
        self.find_task_by_name = find_task_by_name
        self.clock = clock

    def _enforce(self, task: Dict[str, Any], rules: List[ValidationRule] = None) -> None:
        rule = first_violation(task, self.clock(), rules)
        if rule is not None:
            logger.warning("Task rejected by rule %s", rule.name)
            raise ValidationError(rule.message, rule=rule.name)

    def _enforce_unique_name(self, user_id: int, name: str, task_id: int = None) -> None:
        existing = self.find_task_by_name(user_id, name)
        if existing and existing.get('id') != task_id:
            logger.warning("Task name '%s' already used by user %s", name, user_id)
            raise ConflictError(UNIQUE_NAME_MESSAGE, rule=UNIQUE_NAME_RULE)

    def validate_create(self, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        """Return the normalized task to insert, with defaults and derived estimate filled in."""
        task = normalize_task_input(data)
        task.setdefault('status', 'Todo')
        task.setdefault('priority', 'Medium')

        self._enforce(task)
        self._enforce_unique_name(user_id, task['name'])

        if 'estimated_time' not in task:
            task['estimated_time'] = estimate_hours(task['start_date'], task['due_date'])
        task['user_id'] = user_id
        return task

    def validate_update(self, task: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate a partial update against the stored ``task``.

        Supplying one date requires the other. The status/date rules run on
        the merged state only when the update touches status or dates.
        """
        changes = normalize_task_input(updates, partial=True)

        if ('start_date' in changes) != ('due_date' in changes):
            rule = TASK_RULES[0]
            raise ValidationError(rule.message, rule=rule.name)

        if any(field in changes for field in TEMPORAL_FIELDS):
            merged = dict(task)
            merged.update(changes)
            self._enforce(merged, TASK_RULES[1:])

        if 'name' in changes and changes['name'] != task.get('name'):
            self._enforce_unique_name(task['user_id'], changes['name'], task_id=task.get('id'))

        return changes
