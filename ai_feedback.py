"""
AI Feedback - Schedule analysis and progress feedback from Gemini
"""

import logging
from typing import Any, Callable, Dict, List

import google.generativeai as genai

from errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

NO_FEEDBACK = 'No feedback provided by the AI model.'

SCHEDULE_GENERATION_CONFIG = {
    'temperature': 2,
    'top_p': 0.95,
    'top_k': 40,
    'max_output_tokens': 8192,
    'response_mime_type': 'text/plain',
}

FEEDBACK_GENERATION_CONFIG = {
    'temperature': 0.7,
    'top_p': 0.9,
    'top_k': 50,
    'max_output_tokens': 8192,
    'response_mime_type': 'text/plain',
}

SCHEDULE_INTRO = 'Analyze the following tasks and provide optimization suggestions.'
FEEDBACK_INTRO = ('Analyze the following tasks and provide feedback on areas of excellence, '
                  'improvement, and motivational advice.')


def _title(task: Dict[str, Any]) -> str:
    return task.get('title') or task.get('name') or 'Untitled'


def build_schedule_prompt(events: List[Dict[str, Any]]) -> str:
    """Prompt asking for warnings, prioritization advice and quick fixes for a calendar."""
    lines = []
    for event in events:
        lines.append(
            f"All Day: {event.get('allDay')}, "
            f"Description: {event.get('desc') or event.get('description')}, "
            f"End: {event.get('end')}, "
            f"Estimated Time: {event.get('estimatedTime') or 'Not Scheduled'}, "
            f"Priority: {event.get('priority')}, "
            f"Status: {event.get('status')}, "
            f"Title: {_title(event)}"
        )

    return (
        "Analyze the following tasks:\n"
        + "\n".join(lines)
        + "\nProvide feedback on this schedule with the following include\n"
        "Warnings: Identify at least three tasks that are too tightly scheduled, have conflicts, "
        "or could cause problems. Make sure to highlight at least three issues.\n"
        "Prioritization Recommendations: Advise on which tasks should be prioritized and balanced;\n"
        "Simple Steps to Fix: Suggest quick fixes to improve the schedule, such as moving or "
        "extending tasks, or adjusting priorities. Keep the feedback concise and easy to understand.\n"
    )


def build_feedback_prompt(tasks: List[Dict[str, Any]]) -> str:
    """Prompt with excellence / attention / motivation sections built from task states."""
    excellence = []
    attention = []
    motivation = []

    for task in tasks:
        title = _title(task)
        status = task.get('status')
        estimated = task.get('estimatedTime', task.get('estimated_time'))

        if status == 'Completed':
            excellence.append(
                f"Task: {title}\nStatus: Completed on time! Excellent work. "
                "You managed to finish this task as planned. Keep up the great work!"
            )

        if status == 'Expired':
            due = task.get('dueDate', task.get('due_date'))
            attention.append(
                f"Task: {title}\nStatus: Expired. This task requires more attention. "
                f"It was due on {due}. Try breaking it into smaller tasks to make it easier to complete."
            )
        elif status == 'In Progress' and not estimated:
            attention.append(
                f"Task: {title}\nStatus: In Progress. This task requires more attention. "
                "Consider adding an estimated time or deadline to help focus your efforts."
            )

        if status == 'In Progress' and task.get('priority') == 'High':
            motivation.append(
                f"Task: {title}\nStatus: In Progress. This task is high priority, "
                "so keep pushing to get it done. You're on the right track!"
            )
        elif status == 'Todo':
            motivation.append(
                f"Task: {title}\nStatus: Not Started. Make sure to prioritize this task soon. You've got this!"
            )

    return (
        "## Areas of Excellence:\n"
        + ("\n".join(excellence) or 'No tasks have been completed yet, but keep going!')
        + "\n\n## Tasks Needing Attention:\n"
        + ("\n".join(attention) or 'No overdue tasks at the moment. Keep managing your deadlines!')
        + "\n\n## Motivational Feedback:\n"
        + ("\n".join(motivation) or 'Great job! Stay focused and keep pushing forward.')
        + "\n"
    )


def gemini_model_factory(api_key: str, model_name: str = 'gemini-1.5-flash') -> Callable[[Dict[str, Any]], Any]:
    """Build a factory returning a configured ``GenerativeModel`` per generation config."""
    if api_key:
        genai.configure(api_key=api_key)

    def factory(generation_config: Dict[str, Any]):
        if not api_key:
            raise UpstreamError('AI service is not configured')
        return genai.GenerativeModel(model_name, generation_config=generation_config)

    return factory


def _response_text(response) -> str:
    try:
        text = response.text
    except ValueError:
        # blocked or empty candidates
        text = ''
    if not text and getattr(response, 'candidates', None):
        for candidate in response.candidates:
            if candidate.content and candidate.content.parts:
                text = ''.join(part.text for part in candidate.content.parts if getattr(part, 'text', None))
                if text:
                    break
    return text or ''


class ScheduleAdvisor:
    """
    Sends task data to a generative model and returns its text reply.

    ``model_factory(generation_config)`` must return an object with
    ``start_chat(history=...)``, as ``google.generativeai.GenerativeModel`` does.
    """

    def __init__(self, model_factory: Callable[[Dict[str, Any]], Any]):
        self.model_factory = model_factory

    def _ask(self, intro: str, prompt: str, generation_config: Dict[str, Any]) -> str:
        try:
            model = self.model_factory(generation_config)
            chat = model.start_chat(history=[{'role': 'user', 'parts': [intro]}])
            logger.debug("Generated prompt: %s", prompt)
            response = chat.send_message(prompt)
        except UpstreamError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Gemini request failed")
            raise UpstreamError(
                'An error occurred while contacting the AI service. Please try again later.'
            ) from exc

        return _response_text(response) or NO_FEEDBACK

    def analyze_schedule(self, events: List[Dict[str, Any]]) -> str:
        if not isinstance(events, list):
            raise ValidationError('calendarEvents must be a non-empty array of task data.')
        return self._ask(SCHEDULE_INTRO, build_schedule_prompt(events), SCHEDULE_GENERATION_CONFIG)

    def get_feedback(self, tasks: List[Dict[str, Any]]) -> str:
        if not isinstance(tasks, list):
            raise ValidationError('tasks must be a non-empty array.')
        return self._ask(FEEDBACK_INTRO, build_feedback_prompt(tasks), FEEDBACK_GENERATION_CONFIG)
