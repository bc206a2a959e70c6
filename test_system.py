"""
Test suite for Task Management System
Tests the task store, task service and analytics together
"""

import math
from datetime import datetime

import pytest

from analytics import Analytics
from conftest import fixed_clock
from errors import ConflictError, NotFoundError, ValidationError


def make_task(task_manager, user_id, name='Write report', **overrides):
    data = {
        'name': name,
        'priority': 'High',
        'startDate': '2024-06-06T09:00:00',
        'dueDate': '2024-06-07T17:30:00',
    }
    data.update(overrides)
    return task_manager.create_task(user_id, data)


# ==================== DATABASE TESTS ====================

def test_database_connection(db):
    """Test database connection"""
    stats = db.get_database_stats()
    assert stats == {'users': 0, 'tasks': 0}


def test_database_round_trips_dates(db, user_id):
    task_id = db.create_task(user_id, 'Dates', datetime(2024, 6, 6, 9), datetime(2024, 6, 6, 10, 15))
    task = db.get_task(task_id)
    assert task['start_date'] == datetime(2024, 6, 6, 9)
    assert task['due_date'] == datetime(2024, 6, 6, 10, 15)
    assert isinstance(task['created_at'], datetime)


def test_find_tasks_for_user_uses_full_containment(db, user_id):
    db.create_task(user_id, 'Inside', datetime(2024, 6, 4), datetime(2024, 6, 5))
    db.create_task(user_id, 'Straddles', datetime(2024, 6, 2), datetime(2024, 6, 4))
    names = [t['name'] for t in db.find_tasks_for_user(user_id, datetime(2024, 6, 3), datetime(2024, 6, 9, 23, 59, 59))]
    assert names == ['Inside']


# ==================== TASK CREATION ====================

def test_task_creation(task_manager, user_id):
    """Test task creation"""
    task = make_task(task_manager, user_id, description='Quarterly numbers')
    assert task['name'] == 'Write report'
    assert task['status'] == 'Todo'
    assert task['priority'] == 'High'
    assert task['description'] == 'Quarterly numbers'
    assert task['user_id'] == user_id


def test_estimated_time_derived_from_dates(task_manager, user_id):
    task = make_task(task_manager, user_id)
    expected = math.ceil((datetime(2024, 6, 7, 17, 30) - datetime(2024, 6, 6, 9)).total_seconds() / 3600)
    assert task['estimated_time'] == expected == 33


def test_duplicate_name_for_same_user_conflicts(task_manager, user_id):
    make_task(task_manager, user_id)
    with pytest.raises(ConflictError):
        make_task(task_manager, user_id)


def test_same_name_allowed_for_different_users(task_manager, user_id, other_user_id):
    make_task(task_manager, user_id)
    assert make_task(task_manager, other_user_id)['user_id'] == other_user_id


def test_invalid_task_never_reaches_store(task_manager, db, user_id):
    with pytest.raises(ValidationError):
        make_task(task_manager, user_id, dueDate='2024-06-06T08:00:00')
    assert db.get_database_stats()['tasks'] == 0


def test_sub_second_dates_cannot_collapse_to_equal_timestamps(task_manager, db, user_id):
    with pytest.raises(ValidationError) as exc:
        make_task(task_manager, user_id, 'Blink', startDate='2024-06-06T09:00:00.100000',
                  dueDate='2024-06-06T09:00:00.900000')
    assert exc.value.rule == 'due_after_start'
    assert db.get_database_stats()['tasks'] == 0


def test_stored_dates_keep_due_after_start(task_manager, user_id):
    task = make_task(task_manager, user_id, startDate='2024-06-06T09:00:00.900000',
                     dueDate='2024-06-06T09:00:01.100000')
    assert task['start_date'] == datetime(2024, 6, 6, 9, 0, 0)
    assert task['due_date'] == datetime(2024, 6, 6, 9, 0, 1)
    assert task['due_date'] > task['start_date']


def test_name_taken_between_check_and_insert_conflicts(task_manager, user_id):
    make_task(task_manager, user_id)
    # a concurrent writer that inserted after our lookup
    task_manager.validator.find_task_by_name = lambda uid, name: None
    with pytest.raises(ConflictError) as exc:
        make_task(task_manager, user_id)
    assert exc.value.rule == 'unique_name'


def test_rename_racing_another_task_conflicts(task_manager, user_id):
    make_task(task_manager, user_id, 'Taken')
    other = make_task(task_manager, user_id, 'Other')
    task_manager.validator.find_task_by_name = lambda uid, name: None
    with pytest.raises(ConflictError):
        task_manager.update_task(user_id, other['id'], {'name': 'Taken'})


# ==================== TASK RETRIEVAL ====================

def test_task_retrieval_is_scoped_to_owner(task_manager, user_id, other_user_id):
    """Test task retrieval"""
    task = make_task(task_manager, user_id)
    assert task_manager.get_task(user_id, task['id'])['name'] == 'Write report'
    with pytest.raises(NotFoundError):
        task_manager.get_task(other_user_id, task['id'])


def test_get_tasks_search_filter_and_sort(task_manager, user_id):
    make_task(task_manager, user_id, 'Write report', priority='High')
    make_task(task_manager, user_id, 'Review REPORT', priority='Low', startDate='2024-06-08T09:00:00',
              dueDate='2024-06-08T10:00:00')
    make_task(task_manager, user_id, 'Gym', priority='Low')

    assert {t['name'] for t in task_manager.get_tasks(user_id, search='report')} == {'Write report', 'Review REPORT'}
    assert [t['name'] for t in task_manager.get_tasks(user_id, priority='Low', sort_by='name')] == ['Gym', 'Review REPORT']
    assert [t['name'] for t in task_manager.get_tasks(user_id, sort_by='dueDate')][-1] == 'Review REPORT'


def test_get_tasks_default_order_is_newest_first(task_manager, user_id):
    make_task(task_manager, user_id, 'First')
    make_task(task_manager, user_id, 'Second')
    assert [t['name'] for t in task_manager.get_tasks(user_id)] == ['Second', 'First']


def test_get_tasks_rejects_unknown_sort_field(task_manager, user_id):
    with pytest.raises(ValidationError):
        task_manager.get_tasks(user_id, sort_by='password_hash')


# ==================== TASK UPDATE & DELETE ====================

def test_task_update(task_manager, user_id):
    """Test task update"""
    task = make_task(task_manager, user_id)
    updated = task_manager.update_task(user_id, task['id'], {'description': 'Updated', 'priority': 'Low'})
    assert updated['description'] == 'Updated'
    assert updated['priority'] == 'Low'


def test_task_update_revalidates_dates(task_manager, user_id):
    task = make_task(task_manager, user_id)
    with pytest.raises(ValidationError) as exc:
        task_manager.update_task(user_id, task['id'], {'startDate': '2024-06-08T00:00:00',
                                                       'dueDate': '2024-06-07T00:00:00'})
    assert exc.value.rule == 'due_after_start'


def test_update_missing_task_is_not_found(task_manager, user_id):
    with pytest.raises(NotFoundError):
        task_manager.update_task(user_id, 999, {'description': 'x'})


def test_task_deletion(task_manager, db, user_id):
    """Test task deletion"""
    task = make_task(task_manager, user_id)
    assert task_manager.delete_task(user_id, task['id'])
    assert db.get_task(task['id']) is None
    with pytest.raises(NotFoundError):
        task_manager.delete_task(user_id, task['id'])


def test_deleting_user_cascades_to_tasks(task_manager, user_manager, db, user_id):
    make_task(task_manager, user_id)
    user_manager.delete_user(user_id)
    assert db.get_database_stats()['tasks'] == 0


def test_expire_overdue_tasks(task_manager, db, user_id):
    make_task(task_manager, user_id, 'Done', status='Completed',
              startDate='2024-06-01T09:00:00', dueDate='2024-06-02T09:00:00')
    running = make_task(task_manager, user_id, 'Running', status='In Progress',
                        startDate='2024-06-01T09:00:00', dueDate='2024-06-09T09:00:00')
    late_id = db.create_task(user_id, 'Late', datetime(2024, 6, 1), datetime(2024, 6, 4), status='In Progress')

    assert task_manager.expire_overdue_tasks(user_id) == 1
    assert db.get_task(late_id)['status'] == 'Expired'
    assert db.get_task(running['id'])['status'] == 'In Progress'


# ==================== ANALYTICS TESTS ====================

def test_status_counts_include_every_status(db, task_manager, user_id):
    make_task(task_manager, user_id, 'A')
    make_task(task_manager, user_id, 'B', status='In Progress', startDate='2024-06-05T08:00:00')
    counts = Analytics(db, clock=fixed_clock).get_task_status_counts(user_id)
    assert counts == {'Todo': 1, 'In Progress': 1, 'Completed': 0, 'Expired': 0}


def test_status_chart_payload(db, task_manager, user_id):
    make_task(task_manager, user_id, 'A')
    chart = Analytics(db, clock=fixed_clock).get_task_status_chart(user_id)
    assert chart['labels'] == ['Todo', 'In Progress', 'Completed', 'Expired']
    assert chart['datasets'][0]['data'] == [1, 0, 0, 0]
    assert chart['datasets'][0]['backgroundColor'] == ['#F59E0B', '#3B82F6', '#10B981', '#EF4444']
    assert chart['datasets'][0]['hoverOffset'] == 10


def test_completion_rate(db, task_manager, user_id):
    make_task(task_manager, user_id, 'Open')
    make_task(task_manager, user_id, 'Done', status='Completed',
              startDate='2024-06-01T09:00:00', dueDate='2024-06-02T09:00:00')
    rate = Analytics(db, clock=fixed_clock).get_completion_rate(user_id)
    assert rate == {'total_tasks': 2, 'completed_tasks': 1, 'completion_rate': 50.0, 'remaining_tasks': 1}


def test_dashboard_data(db, task_manager, user_id, other_user_id):
    make_task(task_manager, user_id, 'Soon', estimatedTime=4)
    db.create_task(user_id, 'Overdue', datetime(2024, 6, 1), datetime(2024, 6, 4), estimated_time=2)
    make_task(task_manager, other_user_id, 'Not mine')

    dashboard = Analytics(db, clock=fixed_clock).get_dashboard_data(user_id)

    assert dashboard['total_tasks'] == 2
    assert dashboard['overdue_count'] == 1
    assert [t['name'] for t in dashboard['upcoming_tasks']] == ['Soon']
    assert dashboard['total_estimated_hours'] == 6
    assert dashboard['task_priority_distribution'] == {'High': 1, 'Medium': 1, 'Low': 0}
    assert dashboard['weekly_hours']['data'] == [0, 0, 0, 2, 2, 0, 0]
