"""Fixed vocabularies for reports, matches and notifications."""

REPORT_KINDS = ["lost", "found"]

# lifecycle order; transitions move forward unless the owner edits before any match exists
REPORT_STATUSES = ["unresolved", "found", "matched", "returned"]
OPEN_REPORT_STATUSES = {"unresolved", "found"}

NOTIFICATION_TYPES = [
    "match_found",
    "claim_received",
    "confirmation_pending",
    "match_confirmed",
    "match_rejected",
]

# lexical fallback stop words (tokens of length <= 2 are dropped before this check)
STOP_WORDS = {
    "the", "a", "an", "is", "are", "was", "were", "it", "its", "my", "i",
    "in", "on", "at", "to", "for", "of", "and", "or", "with", "has", "have", "had",
}

MIN_TOKEN_LENGTH = 3

TITLE_MAX_LEN = 200
DESCRIPTION_MAX_LEN = 4000


def opposite_kind(kind: str) -> str:
    return "found" if kind == "lost" else "lost"


def status_rank(status: str) -> int:
    return REPORT_STATUSES.index(status)
