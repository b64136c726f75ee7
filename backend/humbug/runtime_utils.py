from __future__ import annotations

import hashlib
import random
import re
import secrets
from datetime import datetime, timezone
from typing import Any, Iterable

from .runtime_constants import (
    CLUB_SUFFIXES_RE,
    LEADING_ARTICLES_RE,
    NICKNAME_MAX_LENGTH,
    ROOM_CODE_CHARS,
    ROOM_CODE_LENGTH,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_or_none(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def random_room_code(length: int = ROOM_CODE_LENGTH) -> str:
    return "".join(random.choice(ROOM_CODE_CHARS) for _ in range(length))


def hash_secret(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def generate_session_token() -> str:
    return secrets.token_hex(32)


def normalize_session_token(raw: str | None) -> str | None:
    value = str(raw or "").strip().lower()
    if len(value) != 64 or any(ch not in "0123456789abcdef" for ch in value):
        return None
    return value


def mask_for_logs(value: str | None) -> str:
    if not value:
        return "none"
    return hash_secret(value)[:10]


def sanitize_room_code(raw: Any) -> str:
    value = str(raw or "").strip().upper()
    return "".join(ch for ch in value if ch.isalnum())[:ROOM_CODE_LENGTH]


def sanitize_nickname(raw: Any) -> str:
    return re.sub(r"\s+", " ", str(raw or "")).strip()[:NICKNAME_MAX_LENGTH]


def normalize_answer(value: str) -> str:
    return str(value or "").strip().lower()


def exact_answer_matches(user_answer: str, accepted_answers: Iterable[str]) -> bool:
    submitted = normalize_answer(user_answer)
    if not submitted:
        return False
    return any(submitted == normalize_answer(answer) for answer in accepted_answers if answer)


def _fuzzy_normalize(value: str) -> str:
    text = str(value or "").lower().strip()
    text = LEADING_ARTICLES_RE.sub("", text)
    text = CLUB_SUFFIXES_RE.sub("", text)
    text = re.sub(r"[^\w\s]", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def _key_words(value: str) -> list[str]:
    return [word for word in value.split() if len(word) > 2]


def levenshtein_distance(a: str, b: str) -> int:
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            if char_a == char_b:
                current.append(previous[j - 1])
            else:
                current.append(min(previous[j - 1], previous[j], current[j - 1]) + 1)
        previous = current
    return previous[-1]


def fuzzy_answer_matches(user_answer: str, accepted_answers: Iterable[str]) -> bool:
    """Typo-tolerant match used when ANSWER_MATCHING=fuzzy.

    Articles, club suffixes and punctuation are ignored. A multi-word answer
    is accepted when at least 75% of its significant words are matched,
    each within one edit.
    """
    normalized_user = _fuzzy_normalize(user_answer)
    user_words = _key_words(normalized_user)

    for accepted in accepted_answers:
        if not accepted:
            continue
        normalized_accepted = _fuzzy_normalize(accepted)
        if normalized_user and normalized_user == normalized_accepted:
            return True

        accepted_words = _key_words(normalized_accepted)
        if not accepted_words:
            continue

        matching = [
            word
            for word in user_words
            if any(
                word == candidate
                or (len(word) >= 3 and len(candidate) >= 3 and levenshtein_distance(word, candidate) <= 1)
                for candidate in accepted_words
            )
        ]
        ratio = len(matching) / len(accepted_words)
        if ratio >= 1.0 or (len(accepted_words) >= 2 and ratio >= 0.75):
            return True

    return False


def answer_matches(user_answer: str, accepted_answers: Iterable[str], mode: str = "exact") -> bool:
    accepted = [str(answer) for answer in accepted_answers if answer]
    if mode == "fuzzy":
        return fuzzy_answer_matches(user_answer, accepted)
    return exact_answer_matches(user_answer, accepted)
