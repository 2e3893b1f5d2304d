"""WebSocket protocol constants: message types, progress stages and error codes.

Pure data module -- no imports, no logic. Safe to import from the client,
the session adapter and the server alike.
"""

# ── Session lifecycle (both directions) ───────────────────────────────

MSG_CONNECT = "connect"
MSG_DISCONNECT = "disconnect"

# ── Client -> Server message types ────────────────────────────────────

MSG_START_ANALYSIS = "start_analysis"
MSG_USER_ANSWER = "user_answer"

# ── Server -> Client message types ────────────────────────────────────

MSG_PROGRESS_UPDATE = "progress_update"
MSG_USER_INPUT = "user_input"  # server asks a clarifying question
MSG_RESULTS = "results"
MSG_ERROR = "error"

MESSAGE_TYPES = frozenset({
    MSG_CONNECT,
    MSG_START_ANALYSIS,
    MSG_USER_INPUT,
    MSG_USER_ANSWER,
    MSG_PROGRESS_UPDATE,
    MSG_RESULTS,
    MSG_ERROR,
    MSG_DISCONNECT,
})

# ── Progress stages ───────────────────────────────────────────────────

STAGE_INITIALIZATION = "initialization"
STAGE_UNDERSTANDING = "understanding"
STAGE_COMPLETION = "completion"

# ── Error codes (machine-readable, included in MSG_ERROR payloads) ────

ERR_INVALID_MESSAGE = "INVALID_MESSAGE"
ERR_UNKNOWN_TYPE = "UNKNOWN_TYPE"
ERR_NO_ACTIVE_SESSION = "NO_ACTIVE_SESSION"
ERR_INVALID_REQUEST = "INVALID_REQUEST"
ERR_NO_PENDING_QUESTION = "NO_PENDING_QUESTION"
ERR_ANALYSIS_FAILED = "ANALYSIS_FAILED"
ERR_INTERNAL = "INTERNAL_ERROR"
ERR_RECONNECT_EXHAUSTED = "RECONNECT_EXHAUSTED"
