"""
Bounded in-memory episode store.

The store is a ring buffer: once `capacity` episodes are held, every append
evicts the oldest one. It is the only place history lives; reliability
scoring and both analyses read from it.

Appends are serialized by a lock. Reads take a snapshot under the lock and
do their ranking/filtering outside it, so request handlers in the threadpool
never see a half-applied rotation.
"""
import json
import re
import threading
from collections import deque
from typing import Deque, List, Optional, Sequence, Set, Tuple

from procheff.core.logging import get_logger
from procheff.core.metrics import record_context_store_eviction, update_context_store_size
from procheff.services.orchestrator.errors import EpisodeNotFoundError
from procheff.services.orchestrator.schema import Episode, EpisodeQuery

logger = get_logger(__name__)

_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)
MIN_TOKEN_LENGTH = 3


def tokenize(text: str) -> List[str]:
    """Lowercase alphanumeric words of at least MIN_TOKEN_LENGTH characters, in order, deduplicated."""
    seen = {}
    for word in _WORD_RE.findall((text or "").lower()):
        if len(word) >= MIN_TOKEN_LENGTH:
            seen.setdefault(word, None)
    return list(seen)


def _episode_text(episode: Episode) -> str:
    try:
        payload = json.dumps(episode.input, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        payload = str(episode.input)
    return " ".join([episode.task_type, " ".join(episode.tags), payload])


def _label_keys(episode: Episode) -> Set[str]:
    """Tags and task type, whole and split into words."""
    labels = {episode.task_type.lower(), *episode.tags}
    keys = set(labels)
    for label in labels:
        keys.update(tokenize(label))
    return keys


def relevance(query_tokens: Sequence[str], episode: Episode) -> float:
    """
    Relevance of an episode to a tokenized query.

    One point per query token equal to a tag or the task type (or a word of
    either), plus the share of query tokens found anywhere in the episode text.
    """
    if not query_tokens:
        return 0.0
    labels = _label_keys(episode)
    text_tokens = set(tokenize(_episode_text(episode)))
    exact = sum(1 for token in query_tokens if token in labels)
    overlap = sum(1 for token in query_tokens if token in text_tokens) / len(query_tokens)
    return exact + overlap


class ContextStore:
    """
    Ring buffer of episodes, oldest first.

    Args:
        capacity: Maximum number of episodes held
    """

    def __init__(self, capacity: int = 1000):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._episodes: Deque[Episode] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        update_context_store_size(0)

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        with self._lock:
            return len(self._episodes)

    def append(self, episode: Episode) -> None:
        """Add an episode, evicting the oldest one when full."""
        with self._lock:
            evicted = self._episodes[0] if len(self._episodes) == self._capacity else None
            self._episodes.append(episode)
            size = len(self._episodes)

        update_context_store_size(size)
        if evicted is not None:
            record_context_store_eviction()
            logger.info(
                "context_store_evicted",
                episode_id=evicted.id,
                task_type=evicted.task_type,
                capacity=self._capacity,
            )

    def snapshot(self) -> List[Episode]:
        """Copy of the current contents, oldest first."""
        with self._lock:
            return list(self._episodes)

    def reset(self) -> None:
        with self._lock:
            cleared = len(self._episodes)
            self._episodes.clear()
        update_context_store_size(0)
        logger.info("context_store_reset", cleared=cleared)

    def get(self, episode_id: str) -> Optional[Episode]:
        for episode in self.snapshot():
            if episode.id == episode_id:
                return episode
        return None

    def recent_assessments(self, limit: int = 10) -> List[Episode]:
        """The `limit` most recent episodes, newest first."""
        if limit < 1:
            return []
        episodes = self.snapshot()
        return list(reversed(episodes[-limit:]))

    def retrieve(self, query: str, limit: int = 10) -> List[Episode]:
        """
        Episodes relevant to a free-text query, most relevant first.

        Ties go to the more recent episode. Episodes with no relevance are
        left out; an empty query returns the most recent episodes.
        """
        if limit < 1:
            return []
        tokens = tokenize(query)
        if not tokens:
            return self.recent_assessments(limit)

        ranked: List[Tuple[float, int, Episode]] = []
        for index, episode in enumerate(self.snapshot()):
            score = relevance(tokens, episode)
            if score > 0:
                ranked.append((score, index, episode))
        ranked.sort(key=lambda item: (-item[0], -item[1]))
        return [episode for _, _, episode in ranked[:limit]]

    def query(self, criteria: EpisodeQuery) -> List[Episode]:
        """Episodes matching every given criterion, newest first."""
        matches: List[Episode] = []
        for episode in reversed(self.snapshot()):
            if criteria.task_type and episode.task_type != criteria.task_type:
                continue
            if criteria.tags and not set(criteria.tags) & set(episode.tags):
                continue
            if criteria.providers and episode.selected_provider not in criteria.providers:
                continue
            if criteria.min_confidence is not None and episode.confidence < criteria.min_confidence:
                continue
            if criteria.since is not None and episode.timestamp < criteria.since:
                continue
            if criteria.until is not None and episode.timestamp > criteria.until:
                continue
            if criteria.success is not None and episode.success != criteria.success:
                continue
            matches.append(episode)
            if criteria.limit is not None and len(matches) >= criteria.limit:
                break
        return matches

    def find_similar(self, episode_id: str, limit: int = 5) -> List[Episode]:
        """
        Episodes resembling a stored one, most similar first.

        Similarity: same task type (2), same selected provider (1), one point
        per shared tag, plus the Jaccard overlap of episode text words.

        Raises:
            EpisodeNotFoundError: if the id is not in the store
        """
        episodes = self.snapshot()
        target = next((e for e in episodes if e.id == episode_id), None)
        if target is None:
            raise EpisodeNotFoundError(episode_id)

        target_tags = set(target.tags)
        target_words = set(tokenize(_episode_text(target)))
        ranked: List[Tuple[float, int, Episode]] = []
        for index, episode in enumerate(episodes):
            if episode.id == target.id:
                continue
            score = 0.0
            if episode.task_type == target.task_type:
                score += 2.0
            if target.selected_provider and episode.selected_provider == target.selected_provider:
                score += 1.0
            score += len(target_tags & set(episode.tags))
            words = set(tokenize(_episode_text(episode)))
            if target_words or words:
                score += len(target_words & words) / len(target_words | words)
            if score > 0:
                ranked.append((score, index, episode))

        ranked.sort(key=lambda item: (-item[0], -item[1]))
        return [episode for _, _, episode in ranked[:limit]]
