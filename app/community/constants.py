"""
Central constants for the school community application.
"""
from __future__ import annotations

# Account roles (visitors never get a users row; the session carries the flag)
ROLE_STUDENT = "student"
ROLE_ADMIN = "admin"
ROLE_VISITOR = "visitor"
ROLES = (ROLE_STUDENT, ROLE_ADMIN, ROLE_VISITOR)

# Account status driven by credibility
STATUS_ACTIVE = "active"
STATUS_THREATENED = "threatened"
STATUS_SUSPENDED = "suspended"
ACCOUNT_STATUSES = (STATUS_ACTIVE, STATUS_THREATENED, STATUS_SUSPENDED)

CREDIBILITY_DEFAULT = 50.0
CREDIBILITY_MIN = 0.0
CREDIBILITY_MAX = 100.0
CREDIBILITY_THREAT_THRESHOLD = 25.0

# Reputation = posts * w + mean post credibility * w + rsvps * w
REPUTATION_POST_WEIGHT = 2.0
REPUTATION_CREDIBILITY_WEIGHT = 1.5
REPUTATION_RSVP_WEIGHT = 3.0

# Scopes
SCOPE_GLOBAL = "global"
SCOPE_GRADE = "grade"
SCOPE_SECTION = "section"
SCOPE_TYPES = (SCOPE_GLOBAL, SCOPE_GRADE, SCOPE_SECTION)
GRADES = (1, 2, 3, 4, 5, 6)
SECTION_LETTERS = ("A", "B", "C", "D", "E")

# Events
EVENT_TYPES = ("curricular", "extracurricular")

# Schedules
DAYS_OF_WEEK = range(1, 8)
PERIODS = range(1, 8)

# Peer ratings (each 1..5)
PEER_METRICS = (
    "initiative",
    "communication",
    "cooperation",
    "kindness",
    "perseverance",
    "fitness",
    "playing_skills",
    "in_class_misconduct",
    "out_class_misconduct",
    "literary_science",
    "natural_science",
    "electronic_science",
    "confidence",
    "temper",
    "cheerfulness",
)
PEER_RATING_MIN = 1
PEER_RATING_MAX = 5
PEER_RATING_DEFAULT_AVERAGE = 3.0

# Tendency charts: a submission covers exactly one group, values 0..10 summing to 33
TENDENCY_GROUPS = {
    "social": (
        "empathy",
        "angerManagement",
        "cooperation",
        "selfConfidence",
        "acceptingCriticism",
        "listening",
    ),
    "skills": (
        "problemSolving",
        "creativity",
        "memoryFocus",
        "planningOrganization",
        "communicationExpression",
        "leadershipInitiative",
    ),
    "interests": (
        "artisticCreative",
        "athleticPhysical",
        "technicalTech",
        "linguisticReading",
        "socialHumanitarian",
        "naturalEnvironmental",
    ),
}
TENDENCY_MIN = 0
TENDENCY_MAX = 10
TENDENCY_TOTAL = 33

MAX_HOBBIES = 5
MAX_HOBBY_LENGTH = 50

# Study sources
STUDY_SOURCE_EXTENSIONS = frozenset(
    {"pdf", "doc", "docx", "ppt", "pptx", "xls", "xlsx", "txt", "png", "jpg", "jpeg", "gif", "zip"}
)
POST_MEDIA_EXTENSIONS = frozenset({"png", "jpg", "jpeg", "gif", "webp", "mp4", "webm", "mov"})

# Accounts
STUDENT_CODE_LENGTH = 8
PASSWORD_MIN_LENGTH = 6
PASSWORD_RESET_TTL_SECONDS = 3600

SETTING_DONATION_URL = "donation_url"
