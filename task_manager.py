"""
Task Manager Module - Handles task creation, retrieval, editing and deletion
"""

import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from database import Database, SORTABLE_TASK_FIELDS, utc_now
from errors import ConflictError, NotFoundError, ValidationError
from task_validator import (
    FIELD_ALIASES, PRIORITIES, STATUSES, UNIQUE_NAME_MESSAGE, UNIQUE_NAME_RULE, TaskValidator,
)

logger = logging.getLogger(__name__)

# sortBy values accepted from the client, camelCase or column names
SORT_ALIASES = dict(FIELD_ALIASES, createdAt='created_at')


class TaskManager:
    """
    Manages all task-related operations for a single owning user at a time.
    Every write goes through the TaskValidator first.
    """

    def __init__(self, db: Database, clock: Callable[[], datetime] = utc_now):
        """Initialize task manager with database instance."""
        self.db = db
        self.clock = clock
        self.validator = TaskValidator(db.find_task_by_name, clock=clock)

    # ==================== TASK CREATION & EDITING ====================

    def create_task(self, user_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and store a new task; returns the stored task."""
        task = self.validator.validate_create(user_id, data)

        try:
            task_id = self.db.create_task(
                user_id=user_id,
                name=task['name'],
                description=task.get('description'),
                priority=task['priority'],
                status=task['status'],
                estimated_time=task['estimated_time'],
                start_date=task['start_date'],
                due_date=task['due_date'],
            )
        except sqlite3.IntegrityError:
            # lost a race with another insert of the same name
            raise ConflictError(UNIQUE_NAME_MESSAGE, rule=UNIQUE_NAME_RULE)
        logger.info("[OK] Task created: '%s' (ID: %s, user %s)", task['name'], task_id, user_id)
        return self.db.get_task(task_id)

    def update_task(self, user_id: int, task_id: int, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a partial update; each supplied field is re-validated."""
        task = self.get_task(user_id, task_id)
        changes = self.validator.validate_update(task, updates)

        if changes:
            try:
                self.db.update_task(task_id, **changes)
            except sqlite3.IntegrityError:
                raise ConflictError(UNIQUE_NAME_MESSAGE, rule=UNIQUE_NAME_RULE)
            logger.info("[OK] Task %s updated (%s)", task_id, ", ".join(sorted(changes)))
        return self.db.get_task(task_id)

    def delete_task(self, user_id: int, task_id: int) -> bool:
        """Delete a task owned by the user."""
        task = self.get_task(user_id, task_id)
        self.db.delete_task(task_id)
        logger.info("[OK] Task '%s' deleted", task['name'])
        return True

    # ==================== TASK RETRIEVAL ====================

    def get_task(self, user_id: int, task_id: int) -> Dict[str, Any]:
        """Get a task; tasks owned by someone else are reported as missing."""
        task = self.db.get_task(task_id)
        if not task or task['user_id'] != user_id:
            raise NotFoundError('Task not found')
        return task

    def get_tasks(self, user_id: int, search: str = None, priority: str = None,
                  status: str = None, sort_by: str = None) -> List[Dict[str, Any]]:
        """Get a user's tasks, optionally searched by name, filtered and sorted."""
        if priority and priority not in PRIORITIES:
            raise ValidationError(f"Invalid priority: {priority}")
        if status and status not in STATUSES:
            raise ValidationError(f"Invalid status: {status}")

        column = None
        if sort_by:
            column = SORT_ALIASES.get(sort_by, sort_by)
            if column not in SORTABLE_TASK_FIELDS:
                raise ValidationError(f"Cannot sort by: {sort_by}")

        return self.db.list_tasks(user_id, search=search, priority=priority, status=status, sort_by=column)

    def get_overdue_tasks(self, user_id: int) -> List[Dict[str, Any]]:
        """Tasks still open (Todo / In Progress) whose due date has passed."""
        now = self.clock()
        return [
            t for t in self.db.list_tasks(user_id)
            if t['status'] in ('Todo', 'In Progress') and t['due_date'] < now
        ]

    # ==================== TASK STATUS MANAGEMENT ====================

    def expire_overdue_tasks(self, user_id: int) -> int:
        """Mark overdue open tasks as Expired; returns how many changed."""
        overdue = self.get_overdue_tasks(user_id)
        for task in overdue:
            self.db.update_task(task['id'], status='Expired')
        if overdue:
            logger.info("[OK] %s task(s) expired for user %s", len(overdue), user_id)
        return len(overdue)
