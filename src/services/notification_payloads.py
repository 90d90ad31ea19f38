"""Canonical push payloads per notification category.

Each category has a stable ``tag`` so the client replaces an older
notification of the same kind instead of stacking them.
"""

from uuid import UUID

from src.models.notification import NotificationAction, NotificationPayload

ICON = "/icons/icon-192x192.png"
BADGE = "/icons/icon-96x96.png"
DASHBOARD_URL = "/dashboard"


def lesson_reminder(lesson_title: str) -> NotificationPayload:
    return NotificationPayload(
        title="📚 Lesson Reminder",
        body=f"Don't forget to complete: {lesson_title}",
        icon=ICON,
        badge=BADGE,
        tag="lesson-reminder",
        data={"type": "lesson_reminder", "url": DASHBOARD_URL},
        actions=[
            NotificationAction(action="view", title="View Lesson"),
            NotificationAction(action="dismiss", title="Dismiss"),
        ],
        url=DASHBOARD_URL,
    )


def new_content(content_title: str, content_id: UUID | str) -> NotificationPayload:
    url = f"/content/{content_id}"
    return NotificationPayload(
        title="🎉 New Content Available",
        body=f"Check out: {content_title}",
        icon=ICON,
        badge=BADGE,
        tag="new-content",
        data={"type": "new_content", "contentId": str(content_id), "url": url},
        actions=[
            NotificationAction(action="view", title="View Now"),
            NotificationAction(action="save", title="Save for Later"),
        ],
        url=url,
    )


def achievement(achievement_title: str) -> NotificationPayload:
    return NotificationPayload(
        title="🏆 Achievement Unlocked!",
        body=achievement_title,
        icon=ICON,
        badge=BADGE,
        tag="achievement",
        data={"type": "achievement", "url": DASHBOARD_URL},
        require_interaction=True,
        url=DASHBOARD_URL,
    )


def insight(message: str) -> NotificationPayload:
    return NotificationPayload(
        title="💡 New Insight",
        body=message,
        icon=ICON,
        badge=BADGE,
        tag="insight",
        data={"type": "insight", "url": DASHBOARD_URL},
        url=DASHBOARD_URL,
    )
