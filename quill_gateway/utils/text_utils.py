"""Text helpers shared by the pipeline and reconciliation"""

import re
from collections import Counter
from typing import List

_WORD_RE = re.compile(r"\S+")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


def count_words(text: str) -> int:
    """Whitespace-delimited word count"""
    if not text:
        return 0
    return len(_WORD_RE.findall(text))


def key_themes(text: str, limit: int = 5) -> List[str]:
    """Most frequent words longer than four letters"""
    words = [w for w in re.sub(r"[^a-zA-Z0-9\s]", " ", text.lower()).split() if len(w) > 4]
    return [word for word, _ in Counter(words).most_common(limit)]


def context_summary(text: str) -> str:
    """Short hand-off summary of a section for the next one"""
    sentences = [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]
    if not sentences:
        return ""
    ending = ". ".join(sentences[-2:]) + "."
    themes = key_themes(text)
    return f"Previous content ended with: {ending}\n\nKey themes established: {', '.join(themes)}"
