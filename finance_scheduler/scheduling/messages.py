"""
Reminder message rendering.

Titles and bodies are rendered relative to the day the reminder is
delivered, so re-rendering the same reminder gives the same text.
"""

from datetime import date

from finance_scheduler.models.notification import Section
from finance_scheduler.models.obligation import RecurringObligation, ReminderOffset


# Keys: "ahead" (2+ days), "tomorrow", "today", "overdue", "body".
TEMPLATES: dict[Section, dict[str, str]] = {
    Section.BILLS: {
        "ahead": "{name} due in {days_left} days",
        "tomorrow": "{name} is due tomorrow",
        "today": "{name} is due today",
        "overdue": "{name} payment overdue",
        "body": "{amount} due on {due_date}",
    },
    Section.DEBTS: {
        "ahead": "{name} payment due in {days_left} days",
        "tomorrow": "{name} payment is due tomorrow",
        "today": "{name} payment is due today",
        "overdue": "{name} payment overdue",
        "body": "Pay {amount} by {due_date}",
    },
    Section.LENDING: {
        "ahead": "{name} repayment expected in {days_left} days",
        "tomorrow": "{name} repayment expected tomorrow",
        "today": "{name} repayment expected today",
        "overdue": "{name} repayment is overdue",
        "body": "{amount} owed to you, due {due_date}",
    },
    Section.BUDGETS: {
        "ahead": "{name} budget period ends in {days_left} days",
        "tomorrow": "{name} budget period ends tomorrow",
        "today": "{name} budget period ends today",
        "overdue": "{name} budget period has ended",
        "body": "Review your {name} spending before {due_date}",
    },
    Section.SAVINGS_GOALS: {
        "ahead": "{name} goal deadline in {days_left} days",
        "tomorrow": "{name} goal deadline is tomorrow",
        "today": "{name} goal deadline is today",
        "overdue": "{name} goal deadline has passed",
        "body": "Target {amount} by {due_date}",
    },
    Section.RECURRING_INCOME: {
        "ahead": "{name} expected in {days_left} days",
        "tomorrow": "{name} is due tomorrow",
        "today": "{name} is due today",
        "overdue": "{name} has not arrived yet",
        "body": "{amount} expected on {due_date}",
    },
}


class _KeepMissing(dict):
    """Unknown template variables are left as written."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def _slot(days_left: int) -> str:
    if days_left < 0:
        return "overdue"
    if days_left == 0:
        return "today"
    if days_left == 1:
        return "tomorrow"
    return "ahead"


def template_variables(
    obligation: RecurringObligation,
    occurrence_date: date,
    delivery_date: date,
) -> dict[str, str]:
    return {
        "name": obligation.name,
        "amount": f"{obligation.currency} {obligation.amount:.2f}",
        "due_date": occurrence_date.strftime("%d %b %Y"),
        "days_left": str((occurrence_date - delivery_date).days),
        "category": obligation.category_id or "",
    }


def render(template: str, variables: dict[str, str]) -> str:
    try:
        return template.format_map(_KeepMissing(variables))
    except (ValueError, IndexError):
        # Malformed user template (stray brace, positional field): show as typed.
        return template


def render_message(
    section: Section,
    obligation: RecurringObligation,
    occurrence_date: date,
    delivery_date: date,
    offset: ReminderOffset,
) -> tuple[str, str]:
    """
    Build (title, body) for one reminder.

    An offset's own templates win over the section defaults.
    """
    variables = template_variables(obligation, occurrence_date, delivery_date)
    templates = TEMPLATES[section]
    days_left = (occurrence_date - delivery_date).days

    title = render(offset.title_template or templates[_slot(days_left)], variables)
    body = render(offset.body_template or templates["body"], variables)
    return title, body
