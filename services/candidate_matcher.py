# WORKFLOW: Ranked suggestions for a code that does not exist upstream.
# Used by: services/taric_engine.py (lookup_v2 not_found branch), tests
# Functions:
# 1. score() - weighted common-prefix score, earlier digits weigh more
# 2. rank_candidates() - declarable codes sharing 6 digits (else 4), sorted by score, capped
#
# Matching flow: heading commodities -> declarable filter -> prefix filter -> score -> sort -> top 10

from typing import Iterable, List, Tuple

from api.schemas.response import Candidate

MAX_CANDIDATES = 10


def score(input_code: str, candidate: str) -> int:
    """Sum of (10 - i) over the leading run of equal digits."""
    total = 0
    for i, (a, b) in enumerate(zip(input_code or "", candidate or "")):
        if a != b:
            break
        total += 10 - i
    return total


def rank_candidates(code10: str, declarables: Iterable[Tuple[str, str]],
                    limit: int = MAX_CANDIDATES) -> List[Candidate]:
    """
    Args:
        code10: normalized, zero-padded input
        declarables: (code, description) pairs of declarable commodities

    Returns:
        Candidates sharing the first 6 digits, or the first 4 when none do,
        best score first
    """
    pool = list(declarables)
    shared = [item for item in pool if item[0].startswith(code10[:6])]
    if not shared:
        shared = [item for item in pool if item[0].startswith(code10[:4])]

    ranked = sorted(
        (Candidate(code=code, description=description, match_score=score(code10, code))
         for code, description in shared),
        key=lambda c: c.match_score,
        reverse=True,
    )
    return ranked[:limit]
