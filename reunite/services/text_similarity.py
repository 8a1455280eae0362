"""Text "same object" confidence, 0-100.

Strategy:
1. Semantic judge (LLM) if configured, on its own pool of
   SEMANTIC_JUDGE_WORKERS. The call is bounded by SEMANTIC_JUDGE_TIMEOUT_S from
   the moment a worker starts it; waiting for a free worker is bounded
   separately by the same amount.
2. Fallback: lexical Jaccard over cleaned tokens of title + description.
Contract: ``score`` never raises and always returns a value in [0, 100].
"""
from __future__ import annotations

import re
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Optional, Set, Tuple

from config import settings
from reunite.domain import report_schema as schema
from reunite.scripts.logging_config import get_logger
from reunite.services.semantic_judge import SemanticJudge

logger = get_logger("matching")

NEUTRAL_TEXT_SCORE = 50

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def tokenize(text: str) -> Set[str]:
    words = (_NON_ALNUM.sub("", w) for w in (text or "").lower().split())
    return {w for w in words if len(w) >= schema.MIN_TOKEN_LENGTH and w not in schema.STOP_WORDS}


def lexical_similarity(lost_name: str, lost_desc: str, found_name: str, found_desc: str) -> int:
    lost_words = tokenize(f"{lost_name or ''} {lost_desc or ''}")
    found_words = tokenize(f"{found_name or ''} {found_desc or ''}")
    if not lost_words or not found_words:
        return NEUTRAL_TEXT_SCORE
    score = len(lost_words & found_words) / len(lost_words | found_words)
    return max(0, min(100, round(score * 100)))


def rescale_judgment(n: int) -> int:
    """1..10 -> 0..100."""
    return round((n - 1) / 9 * 100)


class TextSimilarityScorer:
    def __init__(self, judge: Optional[SemanticJudge] = None,
                 timeout_s: Optional[float] = None, max_workers: Optional[int] = None):
        self.judge = judge
        self.timeout_s = timeout_s if timeout_s is not None else settings.SEMANTIC_JUDGE_TIMEOUT_S
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers or settings.SEMANTIC_JUDGE_WORKERS,
            thread_name_prefix="judge",
        ) if judge is not None else None

    def _judge(self, lost_name: str, lost_desc: str, found_name: str, found_desc: str) -> Optional[int]:
        if self.judge is None or not self.judge.configured:
            return None
        started = threading.Event()

        def run():
            started.set()
            return self.judge.judge_same_object(lost_name, lost_desc, found_name, found_desc)

        future = self._pool.submit(run)
        # the judge timeout starts once a worker picks the call up, not at submit
        if not started.wait(timeout=self.timeout_s):
            future.cancel()
            logger.warning("semantic judge pool saturated for %.1fs, using lexical fallback", self.timeout_s)
            return None
        try:
            raw = future.result(timeout=self.timeout_s)
        except FutureTimeout:
            logger.warning("semantic judge timed out after %.1fs, using lexical fallback", self.timeout_s)
            return None
        except Exception as e:
            logger.warning("semantic judge failed (%s: %s), using lexical fallback", type(e).__name__, e)
            return None
        if raw is None or not isinstance(raw, int) or raw < 1 or raw > 10:
            logger.warning("semantic judge returned invalid score %r, using lexical fallback", raw)
            return None
        return raw

    def score(self, lost_name: str, lost_desc: str, found_name: str, found_desc: str) -> Tuple[int, str]:
        """Return (score 0-100, source) where source is "semantic" or "lexical"."""
        raw = self._judge(lost_name, lost_desc, found_name, found_desc)
        if raw is not None:
            return rescale_judgment(raw), "semantic"
        try:
            return lexical_similarity(lost_name, lost_desc, found_name, found_desc), "lexical"
        except Exception as e:  # pragma: no cover
            logger.error("lexical similarity failed: %s", e)
            return NEUTRAL_TEXT_SCORE, "lexical"

    def close(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=False)
