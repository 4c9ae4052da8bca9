"""
Question subset selection for new attempts.

When a test defines ``questions_to_ask`` smaller than its question pool,
each attempt draws its own uniform random subset. The draw uses a partial
Fisher-Yates shuffle: only the first ``k`` positions are shuffled, each
position swapped with a uniformly chosen later element, so every k-subset
is equally likely.
"""
import logging
import random
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

_default_rng = random.SystemRandom()


def sample_without_replacement(
    items: Sequence[int], k: int, rng: Optional[random.Random] = None
) -> List[int]:
    """
    Return ``k`` distinct elements of ``items`` drawn uniformly at random.

    Args:
        items: Population to draw from. Not modified.
        k: Sample size, 0 <= k <= len(items).
        rng: Random source; tests pass a seeded ``random.Random``.

    Raises:
        ValueError: If k is out of range.
    """
    if k < 0 or k > len(items):
        raise ValueError(f"Sample size {k} out of range for {len(items)} items")

    rng = rng or _default_rng
    pool = list(items)
    n = len(pool)
    for i in range(k):
        j = rng.randrange(i, n)
        pool[i], pool[j] = pool[j], pool[i]
    return pool[:k]


def select_questions(
    questions_to_ask: Optional[int],
    question_ids: Sequence[int],
    rng: Optional[random.Random] = None,
) -> Optional[List[int]]:
    """
    Choose the question subset for a new attempt.

    Returns None ("use every question") when ``questions_to_ask`` is unset,
    not positive, or at least the number of available questions. Otherwise
    returns a uniformly random subset of exactly ``questions_to_ask`` ids.
    """
    available = len(question_ids)
    if not questions_to_ask or questions_to_ask <= 0:
        return None
    if questions_to_ask >= available:
        if questions_to_ask > available:
            logger.info(
                f"questions_to_ask={questions_to_ask} exceeds pool of {available}; "
                "using all questions"
            )
        return None
    return sample_without_replacement(question_ids, questions_to_ask, rng)
