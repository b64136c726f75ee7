from __future__ import annotations

import re

ROOM_CODE_LENGTH = 6
ROOM_CODE_ATTEMPTS = 10
ROOM_CODE_CHARS = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ROOM_CODE_RE = re.compile(r"^[A-Z0-9]{6}$")
NICKNAME_MAX_LENGTH = 50
ANSWER_MAX_LENGTH = 200
SESSION_COOKIE_NAME = "humbug_session"
SESSION_HEADER_NAME = "x-humbug-session"
UNKNOWN_PLAYER_NAME = "Unknown"

ROOM_STATES = ("lobby", "playing", "finished")

LEADING_ARTICLES_RE = re.compile(r"^(the|a|an|le|la|les|el|il|un|una)\s+", re.IGNORECASE)
CLUB_SUFFIXES_RE = re.compile(
    r"\s+(fc|cf|afc|bfc|cfc|united|city|town|rovers|athletic|albion|wanderers)$",
    re.IGNORECASE,
)
