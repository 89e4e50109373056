"""PMTA log type constants and header tables."""
from enum import Enum as PyEnum


class EventType(str, PyEnum):
    """Canonical event/log types."""
    ACCT = "acct"
    TRAN = "tran"
    BOUNCE = "bounce"
    FBL = "fbl"
    RB = "rb"
    UNKNOWN = "unknown"


# Expected headers per PMTA file type, in detection priority order
FILE_TYPE_HEADERS = {
    EventType.ACCT: ["type", "timeLogged", "timeQueued", "orig", "rcpt", "dsnAction", "dsnStatus",
                     "dsnDiag", "bounceCat", "vmta", "jobId"],
    EventType.TRAN: ["type", "timeLogged", "timeQueued", "orig", "rcpt", "dsnStatus", "dsnDiag",
                     "vmta", "jobId"],
    EventType.BOUNCE: ["type", "timeLogged", "bounceCat", "vmta", "orig", "rcpt", "dsnStatus",
                       "dsnDiag", "jobId"],
    EventType.FBL: ["type", "timeLogged", "orig", "rcpt", "vmta", "jobId"],
    EventType.RB: ["type", "timeLogged", "vmta", "domain", "rbType", "dsnStatus", "dsnDiag"],
}

# Accounting record "type" codes -> canonical event type
ACCT_TYPE_MAPPINGS = {
    "d": EventType.TRAN,    # Delivered
    "b": EventType.BOUNCE,  # Bounce
    "t": EventType.ACCT,    # Transient/Deferred
    "f": EventType.FBL,     # Feedback Loop
    "r": EventType.RB,      # Remote Bounce
    "p": EventType.ACCT,    # Queued
}

BOUNCE_EVENT_TYPES = (EventType.BOUNCE.value, EventType.RB.value)
DEFERRED_DSN_ACTION = "delayed"
