"""Phase clock: maps a timestamp onto a challenge's schedule."""

from championship.models import Challenge, Phase


def phase(now: int, enroll_end: int, compete_end: int, judge_end: int) -> Phase:
    """Boundaries are inclusive on the upper end of each window."""
    if now <= enroll_end:
        return Phase.ENROLLMENT
    if now <= compete_end:
        return Phase.COMPETITION
    if now <= judge_end:
        return Phase.JUDGING
    return Phase.CLOSED


def challenge_phase(challenge: Challenge, now: int) -> Phase:
    return phase(now, challenge.enroll_end, challenge.compete_end, challenge.judge_end)
