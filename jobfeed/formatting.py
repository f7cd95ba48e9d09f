"""
Derived display fields for enriched records.

Every formatter returns a placeholder instead of failing, so a degraded
record still renders.
"""
import math
from datetime import datetime, timezone
from typing import Iterable, Optional

from jobfeed.utils.helpers import parse_timestamp, safe_strip

CURRENCY_PREFIX = "Rp"

SALARY_NEGOTIABLE = "Salary negotiable"
LOCATION_NOT_SPECIFIED = "Location not specified"
REQUIREMENTS_NOT_AVAILABLE = "Requirements not available"
REQUIREMENTS_INCOMPLETE = "Requirements incomplete"
BENEFITS_NOT_AVAILABLE = "Benefits not available"
DATE_NOT_AVAILABLE = "Date not available"
DATE_INVALID = "Invalid date"
DEADLINE_NOT_AVAILABLE = "Deadline not available"
DEADLINE_INVALID = "Invalid deadline"

# Deadlines this close get a countdown
DEADLINE_WARNING_DAYS = 3


def format_currency(amount: float) -> str:
    """5000000 -> 'Rp 5.000.000'."""
    return f"{CURRENCY_PREFIX} {int(round(amount)):,}".replace(",", ".")


def format_salary_range(salary_min: Optional[float], salary_max: Optional[float]) -> str:
    if salary_min and salary_max:
        return f"{format_currency(salary_min)} - {format_currency(salary_max)}"
    elif salary_min:
        return f"{format_currency(salary_min)}+"
    elif salary_max:
        return f"Up to {format_currency(salary_max)}"
    return SALARY_NEGOTIABLE


def format_full_location(location_name: Optional[str], province_name: Optional[str] = None) -> str:
    """'City, Province', dropping the province when it repeats the city."""
    parts = []
    city = safe_strip(location_name)
    province = safe_strip(province_name)

    if city:
        parts.append(city)
    if province and province != city:
        parts.append(province)

    return ", ".join(parts) if parts else LOCATION_NOT_SPECIFIED


def format_requirements(
    education_min: Optional[str] = None,
    age_max: Optional[int] = None,
    gender: Optional[str] = None,
    experience: Optional[str] = None,
    items: Iterable[str] = (),
    skills: Iterable[str] = (),
) -> str:
    """
    Render structured requirements as labeled lines and bullet lists.

    Returns:
        The text, REQUIREMENTS_INCOMPLETE if every field was empty
    """
    lines = []

    if education_min:
        lines.append(f"**Education:** {education_min}\n")
    if age_max:
        lines.append(f"**Maximum age:** {age_max} years\n")
    if gender:
        lines.append(f"**Gender:** {gender}\n")
    if experience:
        lines.append(f"**Experience:** {experience}\n")

    items = [i for i in items if safe_strip(i)]
    if items:
        lines.append("**Requirements:**")
        lines.extend(f"• {item}" for item in items)
        lines.append("")

    skills = [s for s in skills if safe_strip(s)]
    if skills:
        lines.append("**Skills:**")
        lines.extend(f"• {skill}" for skill in skills)

    text = "\n".join(lines).strip()
    return text or REQUIREMENTS_INCOMPLETE


def format_benefits(benefits: Optional[Iterable[str]]) -> str:
    benefits = [b for b in (benefits or []) if safe_strip(b)]
    if not benefits:
        return BENEFITS_NOT_AVAILABLE
    return "**Benefits:**\n" + "\n".join(f"• {benefit}" for benefit in benefits)


def _display_date(moment: datetime) -> str:
    return f"{moment.day} {moment.strftime('%B %Y')}"


def format_date(value) -> str:
    """Upstream timestamp -> '18 October 2026'."""
    if value is None or value == "":
        return DATE_NOT_AVAILABLE
    parsed = parse_timestamp(value)
    if parsed is None:
        return DATE_INVALID
    return _display_date(parsed)


def format_deadline(value, now: Optional[datetime] = None) -> str:
    """
    Format an application deadline, flagging passed and imminent ones.

    Args:
        value: Upstream deadline timestamp
        now: Reference time, defaults to the current UTC time
    """
    if value is None or value == "":
        return DEADLINE_NOT_AVAILABLE
    parsed = parse_timestamp(value)
    if parsed is None:
        return DEADLINE_INVALID

    now = now or datetime.now(timezone.utc)
    days_left = math.ceil((parsed - now).total_seconds() / 86400)
    formatted = _display_date(parsed)

    if days_left < 0:
        return f"{formatted} (deadline passed)"
    elif days_left <= DEADLINE_WARNING_DAYS:
        return f"{formatted} ({days_left} days left)"
    return formatted
