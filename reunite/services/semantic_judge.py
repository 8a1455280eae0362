"""Same-object judgment backed by an LLM.

The judge answers a single integer 1..10. Parsing is strict: anything that is
not exactly one integer is reported as ``None`` so the caller can fall back.
"""
from __future__ import annotations

import abc
import re
from typing import Optional

from reunite.services.llm_providers import BaseLLMProvider, get_llm

JUDGE_SYSTEM = "You compare lost and found item reports. Answer with a single integer."

JUDGE_PROMPT = """You are given two items:

LOST ITEM:
Name: {lost_name}
Description: {lost_desc}

FOUND ITEM:
Name: {found_name}
Description: {found_desc}

Determine how likely it is that these two entries refer to the SAME PHYSICAL OBJECT, not just similar items.

OUTPUT: one integer from 1 to 10.
- 10 = almost certainly the same physical object
- 1 = clearly not the same object
Return ONLY the number.

Consider object type, specific model or version, color and distinctive features
(cases, stickers, damage, patterns, accessories). Ignore word order, minor wording
differences, synonyms and paraphrases.

SCORING RULES:
9-10: same object type AND same model/version AND matching color or distinctive features.
7-8: same object type AND same model/version BUT missing one secondary detail (color OR distinctive feature).
4-6: same object type BUT different model/version OR very few shared identifying details.
1-3: different object types OR clearly different items.

If a human would reasonably believe these describe the same object, score 9 or higher.
Your response must be ONLY a single integer between 1 and 10."""

# leading integer, rest ignored ("9", "9/10", "9 - same phone")
_INT_RE = re.compile(r"^\s*(-?\d+)")


def build_prompt(name_a: str, desc_a: str, name_b: str, desc_b: str) -> str:
    return JUDGE_PROMPT.format(
        lost_name=name_a or "Not provided",
        lost_desc=desc_a or "Not provided",
        found_name=name_b or "Not provided",
        found_desc=desc_b or "Not provided",
    )


def parse_judgment(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    m = _INT_RE.match(text)
    if not m:
        return None
    return int(m.group(1))


class SemanticJudge(abc.ABC):
    name: str = "judge"

    @property
    def configured(self) -> bool:
        return True

    @abc.abstractmethod
    def judge_same_object(self, name_a: str, desc_a: str, name_b: str, desc_b: str) -> Optional[int]:
        """Return the raw 1..10 judgment (unvalidated) or None if unparseable."""


class LLMSemanticJudge(SemanticJudge):
    name = "llm"

    def __init__(self, llm: Optional[BaseLLMProvider] = None):
        self.llm = llm or get_llm()

    @property
    def configured(self) -> bool:
        # echo only parrots the prompt back
        return self.llm.name != "echo"

    def judge_same_object(self, name_a: str, desc_a: str, name_b: str, desc_b: str) -> Optional[int]:
        reply = self.llm.generate([
            {"role": "system", "content": JUDGE_SYSTEM},
            {"role": "user", "content": build_prompt(name_a, desc_a, name_b, desc_b)},
        ])
        return parse_judgment(reply)
