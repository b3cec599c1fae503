"""Shared constants for the lessonsync progress engine."""

# Failsafe deadlines, in seconds. Fixed at build time.
SESSION_BOOTSTRAP_SECONDS = 2.0
ENROLLMENT_CHECK_FAILSAFE_SECONDS = 1.5
ENROLLMENT_REMOTE_SECONDS = 3.0
SUBMISSION_FAILSAFE_SECONDS = 5.0

MIN_RESPONSE_LENGTH = 200

DEFAULT_PROGRAM = "COLLEGE"
DEFAULT_TRACK_LEVEL = "beginner"
DEFAULT_LOCALE = "en"
LOCAL_ENROLLMENT_PREFIX = "local_"

KEY_PREFIX = "lessonsync_"
ENROLLMENT_SNAPSHOT_KEY = f"{KEY_PREFIX}local_enrollment"
ONBOARDING_FLAG_KEY = f"{KEY_PREFIX}onboarding_complete"
ACTIVITY_KEY_PREFIX = f"{KEY_PREFIX}activity_"


def activity_key(user_id: str, week_number: int, section_index: int) -> str:
    return f"{ACTIVITY_KEY_PREFIX}{user_id}_{week_number}_{section_index}"
