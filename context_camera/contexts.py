# =============================================================================
# Context Camera - Context Detection
# =============================================================================
# Decides whether a frame shows one of a fixed set of "contexts".
#
# ContextQueryEngine asks the vision API an ordered list of yes/no questions
# about one encoded frame, strictly one at a time, and stops at the first
# affirmative answer.  List order is priority order.
#
# KeywordMatcher is the zero-cost companion: it scans the caption text the
# loop already has for keyword rules and never calls the API.
# =============================================================================

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence, Tuple

from context_camera.errors import VisionError

logger = logging.getLogger(__name__)

AFFIRMATIVE_TOKEN = "yes"
DEFAULT_QUERY_SUFFIX = " respond with one sentence"


@dataclass(frozen=True)
class ContextQuery:
    """A yes/no question and the action label surfaced when it is answered yes."""

    question: str
    action_text: str


@dataclass(frozen=True)
class KeywordRule:
    """Matches a caption containing every keyword (case-insensitive)."""

    keywords: Tuple[str, ...]
    action_text: str

    def matches(self, text: str) -> bool:
        lowered = text.lower()
        return all(keyword.lower() in lowered for keyword in self.keywords)


DEFAULT_CONTEXT_QUERIES: Tuple[ContextQuery, ...] = (
    ContextQuery(
        question="Is the person petting a dog? Answer yes or no.",
        action_text="good pup!",
    ),
)

DEFAULT_KEYWORD_RULES: Tuple[KeywordRule, ...] = (
    KeywordRule(keywords=("thumbs", "up"), action_text="Thumbs Up!"),
    KeywordRule(keywords=("peace", "sign"), action_text="Peace Sign!"),
)


def is_affirmative(answer: str) -> bool:
    """
    Classify an answer as yes/no by case-insensitive containment of "yes".

    Permissive on purpose: "yes, but only partially" counts as yes, and an
    affirmative worded without the literal "yes" counts as no.
    """
    return AFFIRMATIVE_TOKEN in answer.lower()


def load_context_queries(path) -> Tuple[ContextQuery, ...]:
    """
    Load an ordered context list from a JSON file.

    The file holds an array of ``{"question": ..., "action_text": ...}``
    objects.  Order is preserved.

    Args:
        path: Path to the JSON file.

    Returns:
        Tuple of ContextQuery in file order.

    Raises:
        ValueError: The file is not a list of question/action objects.
    """
    with open(Path(path), "r", encoding="utf-8") as fh:
        entries = json.load(fh)
    if not isinstance(entries, list):
        raise ValueError(f"{path}: expected a JSON array of context queries")

    queries = []
    for index, entry in enumerate(entries):
        try:
            queries.append(ContextQuery(question=str(entry["question"]), action_text=str(entry["action_text"])))
        except (KeyError, TypeError) as exc:
            raise ValueError(f"{path}: entry {index} needs 'question' and 'action_text'") from exc
    logger.info("Loaded %d context queries from %s", len(queries), path)
    return tuple(queries)


class ContextQueryEngine:
    """
    Sequential, short-circuiting evaluation of context queries.

    Args:
        client:       Object with ``query(image_url, question) -> str`` that
                      raises VisionError on failure.
        queries:      Ordered context queries; copied into an immutable tuple.
        query_suffix: Appended to every question to keep answers short.
    """

    def __init__(
        self,
        client,
        queries: Iterable[ContextQuery] = DEFAULT_CONTEXT_QUERIES,
        query_suffix: str = DEFAULT_QUERY_SUFFIX,
    ):
        self._client = client
        self._queries = tuple(queries)
        self._query_suffix = query_suffix

    @property
    def queries(self) -> Tuple[ContextQuery, ...]:
        return self._queries

    def evaluate(
        self,
        image_url: str,
        completion: Optional[Callable[[Optional[ContextQuery]], None]] = None,
    ) -> Optional[ContextQuery]:
        """
        Ask each question in order until one is answered yes.

        A failed round trip counts as "no" for that entry only.  Entries after
        a match are never sent.

        Args:
            image_url:  Encoded frame (data URL).
            completion: Optional callback receiving the same value returned.

        Returns:
            The first matching ContextQuery, or None.
        """
        match = None
        for query in self._queries:
            logger.debug("Asking: %s", query.question)
            try:
                answer = self._client.query(image_url, query.question + self._query_suffix)
            except VisionError as exc:
                logger.warning("Context query failed (%s): %s", query.action_text, exc)
                continue

            logger.debug("Response: %s", answer)
            if is_affirmative(answer):
                logger.info("Context match: %s", query.action_text)
                match = query
                break

        if match is None:
            logger.debug("No context matches found.")
        if completion is not None:
            completion(match)
        return match


class KeywordMatcher:
    """
    First-match keyword scan over caption text.

    Args:
        rules: Ordered keyword rules.
    """

    def __init__(self, rules: Sequence[KeywordRule] = DEFAULT_KEYWORD_RULES):
        self._rules = tuple(rules)

    def match(self, text: str) -> Optional[KeywordRule]:
        for rule in self._rules:
            if rule.matches(text):
                logger.info("Keyword match: %s", rule.action_text)
                return rule
        return None
