# envoy_monitor/models/session.py
from dataclasses import dataclass


@dataclass(frozen=True)
class SessionSecrets:
    bearer_token: str
    session_cookie: str

    def __repr__(self) -> str:
        return "SessionSecrets(<redacted>)"
