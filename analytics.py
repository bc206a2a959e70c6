"""
Analytics Engine - Dashboard data and task statistics per user
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List

from database import Database, to_db_datetime, utc_now
from task_validator import PRIORITIES, STATUSES
from time_tracker import TimeTracker

STATUS_COLORS = ['#F59E0B', '#3B82F6', '#10B981', '#EF4444']


class Analytics:
    """
    Provides reporting for a user's tasks: status and priority
    distribution, completion rate, overdue and upcoming work.
    """

    def __init__(self, db: Database, clock: Callable[[], datetime] = utc_now):
        """Initialize analytics engine with database instance."""
        self.db = db
        self.clock = clock
        self.time_tracker = TimeTracker(db, clock=clock)

    # ==================== TASK COUNTS ====================

    def get_task_status_counts(self, user_id: int) -> Dict[str, int]:
        """Count of tasks per status; every status is present."""
        query = """
            SELECT status, COUNT(*) as count
            FROM tasks
            WHERE user_id = ?
            GROUP BY status
        """
        result = {status: 0 for status in STATUSES}
        for row in self.db.execute_query(query, (user_id,)):
            result[row['status']] = row['count']
        return result

    def get_task_counts_by_priority(self, user_id: int) -> Dict[str, int]:
        """Count of tasks per priority, High first."""
        query = """
            SELECT priority, COUNT(*) as count
            FROM tasks
            WHERE user_id = ?
            GROUP BY priority
        """
        result = {priority: 0 for priority in PRIORITIES}
        for row in self.db.execute_query(query, (user_id,)):
            result[row['priority']] = row['count']
        return result

    def get_task_status_chart(self, user_id: int) -> Dict[str, Any]:
        """Status counts shaped for a doughnut chart on the client."""
        counts = self.get_task_status_counts(user_id)
        return {
            'labels': list(STATUSES),
            'datasets': [
                {
                    'data': [counts[status] for status in STATUSES],
                    'backgroundColor': list(STATUS_COLORS),
                    'hoverOffset': 10,
                }
            ],
        }

    # ==================== COMPLETION RATES ====================

    def get_completion_rate(self, user_id: int) -> Dict[str, Any]:
        """Calculate a user's task completion rate."""
        query = """
            SELECT
                COUNT(*) as total,
                COUNT(CASE WHEN status = 'Completed' THEN 1 END) as completed
            FROM tasks
            WHERE user_id = ?
        """
        result = self.db.execute_single(query, (user_id,))

        total = result['total'] if result else 0
        completed = result['completed'] if result else 0
        rate = (completed / total * 100) if total > 0 else 0

        return {
            'total_tasks': total,
            'completed_tasks': completed,
            'completion_rate': round(rate, 1),
            'remaining_tasks': total - completed
        }

    # ==================== DEADLINES ====================

    def get_overdue_tasks_count(self, user_id: int) -> int:
        """Open tasks whose due date has already passed."""
        query = """
            SELECT COUNT(*) as count FROM tasks
            WHERE user_id = ?
            AND status IN ('Todo', 'In Progress')
            AND due_date < ?
        """
        result = self.db.execute_single(query, (user_id, to_db_datetime(self.clock())))
        return result['count'] if result else 0

    def get_upcoming_tasks(self, user_id: int, days: int = 7) -> List[Dict[str, Any]]:
        """Open tasks due within the next ``days`` days, soonest first."""
        now = self.clock()
        query = """
            SELECT id, name, priority, status, due_date FROM tasks
            WHERE user_id = ?
            AND status IN ('Todo', 'In Progress')
            AND due_date BETWEEN ? AND ?
            ORDER BY due_date
        """
        rows = self.db.execute_query(
            query, (user_id, to_db_datetime(now), to_db_datetime(now + timedelta(days=days)))
        )
        return [dict(row) for row in rows]

    def get_total_estimated_hours(self, user_id: int) -> float:
        query = "SELECT COALESCE(SUM(estimated_time), 0) as total FROM tasks WHERE user_id = ?"
        result = self.db.execute_single(query, (user_id,))
        return result['total'] if result else 0

    # ==================== DETAILED REPORTS ====================

    def get_dashboard_data(self, user_id: int) -> Dict[str, Any]:
        """Get the dashboard summary for a user."""
        completion = self.get_completion_rate(user_id)
        return {
            'total_tasks': completion['total_tasks'],
            'task_status_distribution': self.get_task_status_counts(user_id),
            'task_priority_distribution': self.get_task_counts_by_priority(user_id),
            'completion_rate': completion,
            'overdue_count': self.get_overdue_tasks_count(user_id),
            'upcoming_tasks': self.get_upcoming_tasks(user_id),
            'total_estimated_hours': self.get_total_estimated_hours(user_id),
            'weekly_hours': self.time_tracker.get_daily_time_spent(user_id),
        }
