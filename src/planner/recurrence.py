from __future__ import annotations

from typing import Optional

RRULE_PREFIX = "RRULE:"
ALLOWED_RRULE_KEYS = frozenset({"FREQ", "INTERVAL", "COUNT", "UNTIL", "BYDAY", "BYMONTH", "BYMONTHDAY"})


# PUBLIC_INTERFACE
def is_valid_rrule(rule: Optional[str]) -> bool:
    """
    Structural check of a recurrence rule such as ``RRULE:FREQ=WEEKLY;BYDAY=MO``.

    The rule must start with ``RRULE:`` and every ``;``-separated component
    must be ``KEY=VALUE`` with a known key.  Values are not interpreted and the
    rule is never expanded into occurrences.
    """
    if not rule or not rule.startswith(RRULE_PREFIX):
        return False
    body = rule[len(RRULE_PREFIX):]
    if not body:
        return False
    for part in body.split(";"):
        key, sep, value = part.partition("=")
        if not sep or not value or key not in ALLOWED_RRULE_KEYS:
            return False
    return True
