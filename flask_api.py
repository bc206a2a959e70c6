"""
Flask REST API for Task Management System
Provides the REST API for tasks, users, statistics and AI feedback
"""

import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

from flask import Blueprint, Flask, current_app, jsonify, request
from flask.json.provider import DefaultJSONProvider
from flask_cors import CORS
from flask_jwt_extended import (
    JWTManager, create_access_token, create_refresh_token, decode_token,
    get_jwt, get_jwt_identity, jwt_required,
)
from flask_mail import Mail
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from werkzeug.exceptions import HTTPException

from ai_feedback import ScheduleAdvisor, gemini_model_factory
from analytics import Analytics
from config import Config
from database import Database, utc_now
from errors import AuthenticationError, InternalError, TaskAppError, ValidationError
from task_manager import TaskManager
from time_tracker import TimeTracker
from user_manager import UserManager
from verification import VerificationCodeStore, VerificationMailer, generate_verification_code

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'task_app'


class TaskJSONProvider(DefaultJSONProvider):
    """Serialize datetimes as ISO-8601 instead of Flask's HTTP-date format."""

    @staticmethod
    def default(o):
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        return DefaultJSONProvider.default(o)


class Services:
    """Per-app service objects, stored in ``app.extensions``."""

    def __init__(self, db: Database, clock: Callable[[], datetime], mail: Mail,
                 code_ttl: int, code_attempts: int, google_verifier: Callable[[str], Dict[str, Any]],
                 advisor: ScheduleAdvisor, mail_sender: str = None):
        self.db = db
        self.task_manager = TaskManager(db, clock=clock)
        self.time_tracker = TimeTracker(db, clock=clock)
        self.analytics = Analytics(db, clock=clock)
        self.user_manager = UserManager(db)
        self.verification_codes = VerificationCodeStore(
            ttl_seconds=code_ttl, clock=clock, max_attempts=code_attempts
        )
        self.mailer = VerificationMailer(mail, sender=mail_sender)
        self.google_verifier = google_verifier
        self.advisor = advisor


def _services() -> Services:
    return current_app.extensions[EXTENSION_KEY]


def _current_user_id() -> int:
    return int(get_jwt_identity())


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object.')
    return data


def _success(data: Any = None, status: int = 200, **extra):
    payload = {'status': 'SUCCESS'}
    if data is not None:
        payload['data'] = data
    payload.update(extra)
    return jsonify(payload), status


def _issue_tokens(user: Dict[str, Any]) -> Dict[str, str]:
    identity = str(user['id'])
    access_token = create_access_token(identity=identity)
    refresh_token = create_refresh_token(identity=identity)
    _services().user_manager.store_refresh_jti(user['id'], decode_token(refresh_token)['jti'])
    return {'access_token': access_token, 'refresh_token': refresh_token}


def google_token_verifier(client_id: str) -> Callable[[str], Dict[str, Any]]:
    """Verifier that checks a Google ID token's signature and audience."""

    def verify(token: str) -> Dict[str, Any]:
        if not client_id:
            raise InternalError('Google sign-in is not configured')
        return id_token.verify_oauth2_token(token, google_requests.Request(), client_id)

    return verify


auth_api = Blueprint('auth', __name__, url_prefix='/api/auth')
task_api = Blueprint('tasks', __name__, url_prefix='/api/tasks')
analytics_api = Blueprint('analytics', __name__, url_prefix='/api/analytics')
ai_api = Blueprint('ai', __name__, url_prefix='/api/ai')
health_api = Blueprint('health', __name__, url_prefix='/api')


# ==================== AUTHENTICATION ENDPOINTS ====================

@auth_api.route('/register', methods=['POST'])
def register():
    """Register a new user"""
    data = _json_body()
    user = _services().user_manager.register_user(
        data.get('username'),
        data.get('email'),
        data.get('password'),
        data.get('confirmPassword', data.get('confirm_password')),
    )
    return _success(user, 201, message='User registered successfully')


@auth_api.route('/login', methods=['POST'])
def login():
    """Authenticate user and issue access/refresh tokens"""
    data = _json_body()
    user = _services().user_manager.login_user(data.get('email'), data.get('password'))
    return _success(user, message='Login successful', **_issue_tokens(user))


@auth_api.route('/refresh-token', methods=['POST'])
@jwt_required(refresh=True)
def refresh_token():
    """Exchange the current refresh token for a new access token"""
    user_id = _current_user_id()
    if not _services().user_manager.refresh_jti_matches(user_id, get_jwt()['jti']):
        raise AuthenticationError('Refresh token has been revoked')
    return _success(access_token=create_access_token(identity=str(user_id)))


@auth_api.route('/logout', methods=['POST'])
@jwt_required()
def logout():
    """Invalidate the user's refresh token"""
    _services().user_manager.logout_user(_current_user_id())
    return _success(message='Logged out successfully')


@auth_api.route('/profile', methods=['GET'])
@jwt_required()
def get_profile():
    """Get current user profile"""
    return _success(_services().user_manager.get_user(_current_user_id()))


@auth_api.route('/profile', methods=['PUT'])
@jwt_required()
def update_profile():
    """Update username and/or email"""
    data = _json_body()
    user = _services().user_manager.update_user(
        _current_user_id(), email=data.get('email'), username=data.get('username')
    )
    return _success(user, message='Profile updated successfully')


@auth_api.route('/change-password', methods=['POST'])
@jwt_required()
def change_password():
    """Change password of the logged-in user"""
    data = _json_body()
    _services().user_manager.change_password(
        _current_user_id(), data.get('old_password'), data.get('new_password')
    )
    return _success(message='Password changed successfully')


@auth_api.route('/update-password', methods=['POST'])
def update_password():
    """Reset a password given the account's e-mail and username"""
    data = _json_body()
    _services().user_manager.reset_password(data.get('email'), data.get('username'), data.get('password'))
    return _success(message='Password updated successfully')


@auth_api.route('/google', methods=['POST'])
def google_login():
    """Verify a Google ID token and e-mail a verification code"""
    data = _json_body()
    token = data.get('id_token') or data.get('credential')
    if not token:
        raise ValidationError('Google ID token is required')

    services = _services()
    try:
        claims = services.google_verifier(token)
    except (ValueError, google_auth_exceptions.GoogleAuthError) as e:
        logger.warning("Rejected Google token: %s", e)
        raise AuthenticationError('Invalid Google token')

    user = services.user_manager.login_with_google(claims)
    code = generate_verification_code()
    services.verification_codes.save(user['email'], code)
    services.mailer.send_code(user['email'], code)

    return _success(
        {'email': user['email'], 'username': user['username']},
        message='Verification code sent'
    )


@auth_api.route('/verify-email', methods=['POST'])
def verify_email():
    """Confirm the e-mailed code and log the user in"""
    data = _json_body()
    email = data.get('email')
    code = data.get('code')
    if not email or not code:
        raise ValidationError('Email and code are required')

    services = _services()
    if not services.verification_codes.verify(email, str(code)):
        raise ValidationError('Invalid or expired verification code')

    user = services.user_manager.mark_email_verified(email)
    return _success(user, message='Email verified successfully!', **_issue_tokens(user))


# ==================== TASK ENDPOINTS ====================

@task_api.route('', methods=['POST'])
@jwt_required()
def create_task():
    """Create new task"""
    task = _services().task_manager.create_task(_current_user_id(), _json_body())
    return _success(task, 201)


@task_api.route('', methods=['GET'])
@jwt_required()
def get_tasks():
    """Get the user's tasks with optional search, filter and sort"""
    tasks = _services().task_manager.get_tasks(
        _current_user_id(),
        search=request.args.get('search'),
        priority=request.args.get('priority'),
        status=request.args.get('status'),
        sort_by=request.args.get('sortBy'),
    )
    return _success(tasks)


@task_api.route('/<int:task_id>', methods=['GET'])
@jwt_required()
def get_task(task_id):
    """Get single task"""
    return _success(_services().task_manager.get_task(_current_user_id(), task_id))


@task_api.route('/<int:task_id>', methods=['PUT'])
@jwt_required()
def update_task(task_id):
    """Update task"""
    task = _services().task_manager.update_task(_current_user_id(), task_id, _json_body())
    return _success(task)


@task_api.route('/<int:task_id>', methods=['DELETE'])
@jwt_required()
def delete_task(task_id):
    """Delete task"""
    _services().task_manager.delete_task(_current_user_id(), task_id)
    return _success(message='Task deleted successfully')


@task_api.route('/expire', methods=['POST'])
@jwt_required()
def expire_tasks():
    """Mark the user's overdue open tasks as Expired"""
    expired = _services().task_manager.expire_overdue_tasks(_current_user_id())
    return _success({'expired': expired})


# ==================== ANALYTICS ENDPOINTS ====================

@analytics_api.route('/daily-time', methods=['GET'])
@jwt_required()
def get_daily_time_spent():
    """Estimated hours per weekday for the week containing ?startDate="""
    data = _services().time_tracker.get_daily_time_spent(
        _current_user_id(), request.args.get('startDate')
    )
    return jsonify(data)


@analytics_api.route('/dashboard', methods=['GET'])
@jwt_required()
def get_dashboard():
    """Get dashboard summary"""
    return jsonify(_services().analytics.get_dashboard_data(_current_user_id()))


@analytics_api.route('/task-status', methods=['GET'])
@jwt_required()
def get_task_status():
    """Task counts per status as chart data"""
    return jsonify(_services().analytics.get_task_status_chart(_current_user_id()))


# ==================== AI ENDPOINTS ====================

@ai_api.route('/analyze-schedule', methods=['POST'])
@jwt_required()
def analyze_schedule():
    """Ask the AI model to review a calendar of tasks"""
    feedback = _services().advisor.analyze_schedule(_json_body().get('calendarEvents'))
    return jsonify({'feedback': feedback})


@ai_api.route('/feedback', methods=['POST'])
@jwt_required()
def get_ai_feedback():
    """Ask the AI model for progress feedback on tasks"""
    feedback = _services().advisor.get_feedback(_json_body().get('tasks'))
    return jsonify({'feedback': feedback})


# ==================== HEALTH CHECK ====================

@health_api.route('/health', methods=['GET'])
def health_check():
    """Health check endpoint"""
    return jsonify({
        'status': 'healthy',
        'timestamp': utc_now().isoformat(),
        'database_tables': _services().db.get_database_stats()
    })


# ==================== ERROR HANDLERS ====================

def handle_app_error(e: TaskAppError):
    if e.status_code >= 500:
        logger.error("%s: %s", type(e).__name__, e.message, exc_info=e)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.path, e.message)
    return jsonify(e.to_dict()), e.status_code


def handle_unexpected_error(e: Exception):
    if isinstance(e, HTTPException):
        return jsonify({'status': 'ERR', 'message': e.description}), e.code
    logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({'status': 'ERR', 'message': 'Internal server error'}), 500


def _register_jwt_handlers(jwt: JWTManager) -> None:
    def unauthorized(reason):
        return jsonify({'status': 'ERR', 'message': 'Access token is missing'}), 401

    def invalid(reason):
        return jsonify({'status': 'ERR', 'message': 'Access token is invalid or expired'}), 401

    def expired(jwt_header, jwt_payload):
        return jsonify({'status': 'ERR', 'message': 'Access token is invalid or expired'}), 401

    jwt.unauthorized_loader(unauthorized)
    jwt.invalid_token_loader(invalid)
    jwt.expired_token_loader(expired)


# ==================== APPLICATION FACTORY ====================

def create_app(overrides: Optional[Dict[str, Any]] = None,
               clock: Callable[[], datetime] = utc_now,
               google_verifier: Callable[[str], Dict[str, Any]] = None,
               model_factory: Callable[[Dict[str, Any]], Any] = None) -> Flask:
    """
    Build the Flask app.

    ``overrides`` wins over the environment-based Config. ``clock``,
    ``google_verifier`` and ``model_factory`` replace the real time source,
    Google token check and Gemini model (tests pass fakes).
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)
    app.json = TaskJSONProvider(app)

    CORS(app, origins=app.config['CORS_ORIGINS'])
    _register_jwt_handlers(JWTManager(app))
    mail = Mail(app)

    if google_verifier is None:
        google_verifier = google_token_verifier(app.config['GOOGLE_CLIENT_ID'])
    if model_factory is None:
        model_factory = gemini_model_factory(app.config['GEMINI_API_KEY'], app.config['GEMINI_MODEL'])
        if not app.config['GEMINI_API_KEY']:
            logger.warning("GEMINI_API_KEY is not set; AI endpoints will be unavailable")

    app.extensions[EXTENSION_KEY] = Services(
        db=Database(app.config['DATABASE_PATH']),
        clock=clock,
        mail=mail,
        code_ttl=app.config['VERIFICATION_CODE_TTL'],
        code_attempts=app.config['VERIFICATION_MAX_ATTEMPTS'],
        google_verifier=google_verifier,
        advisor=ScheduleAdvisor(model_factory),
        mail_sender=app.config['MAIL_DEFAULT_SENDER'],
    )

    for blueprint in (auth_api, task_api, analytics_api, ai_api, health_api):
        app.register_blueprint(blueprint)

    app.register_error_handler(TaskAppError, handle_app_error)
    app.register_error_handler(Exception, handle_unexpected_error)

    logger.info("[OK] Task API initialised (database: %s)", app.config['DATABASE_PATH'])
    return app
