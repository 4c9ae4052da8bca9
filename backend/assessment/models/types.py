"""Custom SQLAlchemy types for cross-database compatibility.

Column types that behave the same on PostgreSQL (production) and SQLite
(tests).
"""

import json
import logging
from typing import Any, List, Optional

from sqlalchemy import Integer, Text, TypeDecorator
from sqlalchemy.dialects.postgresql import ARRAY

logger = logging.getLogger(__name__)


def normalize_question_ids(value: Any) -> Optional[List[int]]:
    """
    Coerce a stored or incoming question subset into a list of ints.

    Accepts a list, or a JSON string encoding one (rows written by older
    clients stored the list as text). Anything unparseable, and an empty
    list, means "no subset" and returns None.
    """
    if value is None:
        return None

    raw = value
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring unparseable question subset: {value!r}")
            return None
        # Double-encoded legacy values
        if isinstance(raw, str):
            return normalize_question_ids(raw)

    if not isinstance(raw, (list, tuple)):
        logger.warning(f"Ignoring question subset of type {type(raw).__name__}")
        return None

    ids: List[int] = []
    for item in raw:
        if isinstance(item, bool):
            logger.warning(f"Ignoring question subset with boolean entry: {value!r}")
            return None
        try:
            ids.append(int(item))
        except (TypeError, ValueError):
            logger.warning(f"Ignoring question subset with invalid id: {item!r}")
            return None

    if not ids:
        logger.info("Empty question subset stored; treating as all questions")
        return None
    return ids


class QuestionIdList(TypeDecorator):
    """
    An integer list type that works with both PostgreSQL and SQLite.

    - On PostgreSQL: native ARRAY(Integer)
    - On SQLite: JSON text

    Values are normalized on both write and read, so callers always see
    either a non-empty ``list[int]`` or None.

    Usage:
        selected_questions = Column(QuestionIdList(), nullable=True)
    """

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        """Choose implementation based on database dialect."""
        if dialect.name == "postgresql":
            return dialect.type_descriptor(ARRAY(Integer))
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value: Any, dialect) -> Any:
        ids = normalize_question_ids(value)
        if ids is None:
            return None
        if dialect.name == "postgresql":
            return ids
        return json.dumps(ids)

    def process_result_value(self, value: Any, dialect) -> Optional[List[int]]:
        return normalize_question_ids(value)
