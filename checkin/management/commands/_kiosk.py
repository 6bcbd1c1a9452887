"""Helpers shared by the kiosk management commands."""

from __future__ import annotations

from django.core.management.base import CommandError

from checkin.flows import FlowOutcome, FlowStatus
from users.models import Profile


def resolve_profile(registration_number: str) -> Profile:
    try:
        return Profile.objects.get(registration_number=registration_number)
    except Profile.DoesNotExist as exc:
        raise CommandError(f"No profile with registration number {registration_number!r}") from exc


def run_with_retries(flow, profile_id: int, session, attempts: int, stdout, style) -> FlowOutcome:
    """Run ``flow`` again on the same session while no face is detected."""

    outcome = flow.run(profile_id, session)
    remaining = attempts - 1
    while outcome.status is FlowStatus.NO_FACE_DETECTED and remaining > 0:
        stdout.write(style.WARNING(f"{outcome.message} ({remaining} attempt(s) left)"))
        outcome = flow.run(profile_id, session)
        remaining -= 1
    return outcome


def report_outcome(outcome: FlowOutcome, stdout, style) -> None:
    if outcome.is_warning:
        stdout.write(style.WARNING(outcome.message))
    elif outcome.succeeded:
        stdout.write(style.SUCCESS(outcome.message))
    else:
        message = outcome.message
        if outcome.hint:
            message = f"{message} {outcome.hint}"
        raise CommandError(message)
