"""Runtime configuration for the exam proctor service.

Values can be overridden with ``PROCTOR_*`` environment variables.
"""

import os

DATABASE_URL = os.getenv("PROCTOR_DATABASE_URL", "sqlite:///./proctor.db")

# "memory" keeps the registry and question bank in process memory,
# "sql" stores them in the database above.
STORAGE_BACKEND = os.getenv("PROCTOR_STORAGE_BACKEND", "memory")

SECRET_KEY = os.getenv("PROCTOR_SECRET_KEY", "CHANGE_ME_TO_A_RANDOM_SECRET")
BCRYPT_ROUNDS = int(os.getenv("PROCTOR_BCRYPT_ROUNDS", "12"))
LOG_LEVEL = os.getenv("PROCTOR_LOG_LEVEL", "INFO")

DEFAULT_EXAM_ID = os.getenv("PROCTOR_EXAM_ID", "exam-001")
DEFAULT_EXAM_DURATION_MINUTES = int(os.getenv("PROCTOR_EXAM_DURATION_MINUTES", "30"))

# ===== LIVENESS WINDOWS (seconds) =====
# A registry record without a write for this long is reported as terminated.
# Full session pushes happen every REGISTRY_PUSH_INTERVAL_SECONDS.
STALE_SESSION_SECONDS = 30

# The paired phone heartbeats every HEARTBEAT_INTERVAL_SECONDS; two missed
# beats mean the device is no longer connected.
HEARTBEAT_WINDOW_SECONDS = 10

# ===== SCHEDULES (seconds) =====
TICK_INTERVAL_SECONDS = 1
REGISTRY_PUSH_INTERVAL_SECONDS = 2
CONTROL_POLL_INTERVAL_SECONDS = 2
DASHBOARD_POLL_INTERVAL_SECONDS = 2
HEARTBEAT_INTERVAL_SECONDS = 5
QUESTION_POLL_INTERVAL_SECONDS = 30

# ===== PAIRING =====
PAIRING_CODE_LIFETIME_SECONDS = 5 * 60

# ===== FACE TRACKING =====
FACE_ABSENT_MEDIUM_SECONDS = 10
FACE_ABSENT_HIGH_SECONDS = 30
MULTIPLE_FACES_HIGH_COUNT = 3

# ===== RESULTS =====
PASS_THRESHOLD_PERCENT = 60

HTTP_TIMEOUT_SECONDS = 5.0
