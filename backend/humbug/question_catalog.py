from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from .memory_store import MemoryRoomStore
from .runtime_types import QuestionRecord, QuestionSetRecord

logger = logging.getLogger(__name__)


def _string_list(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    return [str(item).strip() for item in raw if str(item or "").strip()]


def _sanitize_question_entry(raw: Any, set_id: int) -> QuestionRecord | None:
    if not isinstance(raw, dict):
        return None

    text_en = str(raw.get("textEn") or "").strip()
    if not text_en:
        return None

    try:
        question_id = int(raw.get("id"))
    except (TypeError, ValueError):
        return None

    accepted = _string_list(raw.get("answersEn")) + _string_list(raw.get("answersHu"))
    if not accepted:
        return None

    return QuestionRecord(
        id=question_id,
        set_id=set_id,
        text_en=text_en[:500],
        text_hu=str(raw.get("textHu") or "").strip()[:500] or None,
        category=str(raw.get("category") or "").strip()[:80] or None,
        accepted_answers=list(dict.fromkeys(accepted)),
    )


def load_question_catalog(path: Path) -> tuple[list[QuestionSetRecord], list[QuestionRecord]]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    sets_raw = payload.get("sets") if isinstance(payload, dict) else None
    if not isinstance(sets_raw, list):
        raise RuntimeError(f"{path.name} must contain a 'sets' array")

    question_sets: list[QuestionSetRecord] = []
    questions: list[QuestionRecord] = []
    seen_question_ids: set[int] = set()
    for index, set_raw in enumerate(sets_raw):
        if not isinstance(set_raw, dict):
            continue
        try:
            set_id = int(set_raw.get("id"))
        except (TypeError, ValueError):
            continue

        set_questions = []
        for entry in set_raw.get("questions") or []:
            question = _sanitize_question_entry(entry, set_id)
            if question is None or question.id in seen_question_ids:
                continue
            seen_question_ids.add(question.id)
            set_questions.append(question)

        question_sets.append(
            QuestionSetRecord(
                id=set_id,
                slug=str(set_raw.get("slug") or f"set-{set_id}"),
                name_en=str(set_raw.get("nameEn") or f"Set {set_id}"),
                name_hu=str(set_raw.get("nameHu") or "").strip() or None,
                display_order=int(set_raw.get("displayOrder", index) or 0),
                is_active=bool(set_raw.get("isActive", True)),
                question_count=len(set_questions),
            )
        )
        questions.extend(set_questions)

    if not questions:
        raise RuntimeError(f"No valid questions were loaded from {path.name}")

    logger.info("Loaded %s question sets with %s questions from %s", len(question_sets), len(questions), path)
    return question_sets, questions


def build_memory_store(path: Path) -> MemoryRoomStore:
    question_sets, questions = load_question_catalog(path)
    return MemoryRoomStore(question_sets, questions)
