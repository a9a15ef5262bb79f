from datetime import timedelta

import msgspec

# Sessions live a week and slide forward when used within the last day.
SESSION_LIFETIME = timedelta(days=7)
SESSION_REFRESH_THRESHOLD = timedelta(days=1)

# A WebAuthn ceremony must complete within this window.
CHALLENGE_TTL = timedelta(minutes=5)

TASK_TITLE_MAX = 100
MAX_TOKENS_PER_USER_PER_ORG = 10
CAPTURE_LIST_LIMIT = 50

AUTH_COOKIE_NAME = "yoink_session"
DB_URL_DEFAULT = "sqlite+aiosqlite:///yoink.sqlite"


class YoinkConfig(msgspec.Struct, frozen=True, kw_only=True, omit_defaults=True):
    """Runtime configuration, passed to workers as JSON in YOINK_CONFIG."""

    rp_id: str
    challenge_secret: str
    rp_name: str | None = None
    origins: list[str] | None = None
    db_url: str = DB_URL_DEFAULT
    session_lifetime: timedelta = SESSION_LIFETIME
    refresh_threshold: timedelta = SESSION_REFRESH_THRESHOLD
    max_tokens_per_user_per_org: int = MAX_TOKENS_PER_USER_PER_ORG
    bcrypt_rounds: int = 12

    def __post_init__(self):
        if len(self.challenge_secret.encode()) < 32:
            raise ValueError("challenge_secret must be at least 32 bytes")
        if self.refresh_threshold >= self.session_lifetime:
            raise ValueError("refresh_threshold must be shorter than session_lifetime")

    @property
    def effective_rp_name(self) -> str:
        return self.rp_name or self.rp_id

    @property
    def effective_origins(self) -> list[str]:
        if self.origins:
            return self.origins
        if self.rp_id == "localhost":
            return ["http://localhost:4402"]
        return [f"https://{self.rp_id}"]

    def to_json(self) -> str:
        return msgspec.json.encode(self).decode()

    @classmethod
    def from_json(cls, data: str | bytes) -> "YoinkConfig":
        return msgspec.json.decode(data, type=cls)
