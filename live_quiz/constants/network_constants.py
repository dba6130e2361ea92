"""Network configuration constants for the live quiz server."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8000
USER_ID_HEADER: str = "X-User-Id"
USER_NAME_HEADER: str = "X-User-Name"
GUEST_COOKIE_PREFIX: str = "quiz_player_"
