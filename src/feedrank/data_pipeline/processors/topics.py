"""Topic extraction contract and a local TF-IDF implementation."""

from __future__ import annotations

import re
import threading
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, TypedDict

import numpy as np
from sklearn.feature_extraction.text import TfidfVectorizer

from feedrank.config.schemas import ContentItem
from feedrank.utils.logging import get_logger

logger = get_logger(__name__)

_POSITIVE = {"love", "great", "awesome", "amazing", "good", "best", "happy", "win", "excited"}
_NEGATIVE = {"hate", "bad", "awful", "terrible", "worst", "sad", "angry", "fail", "broken"}
_JUNK = {"viral", "fyp", "subscribe", "follow", "like", "share", "watch", "new", "just", "now"}


class Analysis(TypedDict):
    topics: List[str]
    sentiment: float


class ContentAnalysisService(Protocol):
    """External topic/sentiment extraction, e.g. a hosted NLP endpoint."""

    def analyze(self, text: str) -> Analysis:
        ...


class KeywordTopicExtractor:
    """Local :class:`ContentAnalysisService` based on TF-IDF keyword weights.

    ``fit`` on a representative corpus to get meaningful IDF weights; before
    fitting, terms are ranked by frequency within the text itself.
    """

    def __init__(self, max_topics: int = 3, max_features: int = 5000) -> None:
        self.max_topics = int(max_topics)
        self.tfidf = TfidfVectorizer(
            max_features=max_features,
            stop_words='english',
            ngram_range=(1, 1),
            min_df=1,
        )
        self._fitted = False
        self._lock = threading.Lock()

    def fit(self, corpus: Iterable[str]) -> "KeywordTopicExtractor":
        docs = [d for d in corpus if d and d.strip()]
        if not docs:
            return self
        with self._lock:
            try:
                self.tfidf.fit(docs)
                self._fitted = True
            except ValueError as e:  # empty vocabulary after stop words
                logger.warning(f"TF-IDF fit skipped: {e}")
        return self

    def analyze(self, text: str) -> Analysis:
        text = text or ""
        hashtags = [h.lower() for h in re.findall(r"#(\w+)", text)]
        return {
            "topics": self._dedupe(hashtags + self._keywords(text))[: self.max_topics],
            "sentiment": self._sentiment(text),
        }

    # ------------------------------------------------------------------
    def _keywords(self, text: str) -> List[str]:
        if not text.strip():
            return []
        with self._lock:
            try:
                if self._fitted:
                    vec = self.tfidf.transform([text])
                    vocab = self.tfidf.get_feature_names_out()
                else:
                    local = TfidfVectorizer(stop_words='english')
                    vec = local.fit_transform([text])
                    vocab = local.get_feature_names_out()
            except ValueError:
                return []
        row = vec.toarray().ravel()
        order = np.argsort(-row, kind="stable")
        return [str(vocab[i]) for i in order if row[i] > 0 and vocab[i] not in _JUNK]

    @staticmethod
    def _sentiment(text: str) -> float:
        words = re.findall(r"[a-z']+", text.lower())
        pos = sum(w in _POSITIVE for w in words)
        neg = sum(w in _NEGATIVE for w in words)
        if pos + neg == 0:
            return 0.0
        return (pos - neg) / float(pos + neg)

    @staticmethod
    def _dedupe(terms: Sequence[str]) -> List[str]:
        seen: Dict[str, None] = {}
        for t in terms:
            seen.setdefault(t, None)
        return list(seen)


class TopicResolver:
    """Resolve topics for a content item, degrading to an empty list on failure.

    Lookup order: topics already on the item, the content repository, then the
    optional analysis service.
    """

    def __init__(self, content_repository=None, analysis_service: Optional[ContentAnalysisService] = None):
        self.content_repository = content_repository
        self.analysis_service = analysis_service

    def topics_for(self, item: ContentItem) -> List[str]:
        if item.topics:
            return list(item.topics)
        if self.content_repository is not None:
            try:
                topics = self.content_repository.get_content_topics(item.content_id)
                if topics:
                    return list(topics)
            except Exception as e:
                logger.warning(f"Topic lookup failed for {item.content_id}: {e}")
        if self.analysis_service is not None and item.text:
            try:
                return list(self.analysis_service.analyze(item.text).get("topics") or [])
            except Exception as e:
                logger.warning(f"Content analysis failed for {item.content_id}: {e}")
        return []
