"""Session timing and join-code constants shared by the core and clients."""

JOIN_CODE_LENGTH: int = 6
JOIN_CODE_ALPHABET: str = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
JOIN_CODE_MAX_ATTEMPTS: int = 10

POLL_INTERVAL_SECONDS: float = 2.0
AUTO_ADVANCE_SETTLE_SECONDS: float = 1.5
MIN_QUESTION_DISPLAY_SECONDS: float = 3.0
KICK_GRACE_SECONDS: float = 3.0

GUEST_ID_PREFIX: str = "guest_"
GUEST_COOKIE_MAX_AGE_SECONDS: int = 60 * 60 * 24
