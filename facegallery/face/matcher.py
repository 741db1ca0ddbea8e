from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from facegallery.config import SFACE_COSINE_THRESHOLD, MatchPolicy
from facegallery.face.region import MatchResult, Region
from facegallery.utils.log import get_logger

logger = get_logger(__name__)

Similarity = Callable[[np.ndarray, np.ndarray], float]


@dataclass
class MatcherConfig:
    # Averaged subject score >= threshold is an identity match (inclusive).
    # 0.363 is calibrated for SFace FR_COSINE; other embedders need their own value.
    threshold: float = SFACE_COSINE_THRESHOLD
    policy: MatchPolicy = MatchPolicy.PER_REGION
    # Number of subject scores logged at debug level per probe.
    topk_debug: int = 5


class IdentityMatcher:
    """Scores probes against every gallery subject by average similarity.

    For each subject, the probe is compared with all of that subject's embeddings
    and the scores are averaged. The best subject whose average reaches the
    threshold labels the probe. Ties keep the gallery's subject order.
    """

    def __init__(self, similarity: Similarity, config: Optional[MatcherConfig] = None):
        self.similarity = similarity
        self.config = config or MatcherConfig()

    def score_subjects(self, embedding: np.ndarray, gallery: Mapping[str, Sequence[np.ndarray]]) -> List[Tuple[str, float]]:
        """(subject, average similarity) for every subject, best first."""
        scores: List[Tuple[str, float]] = []
        for name, embs in gallery.items():
            if len(embs) == 0:
                continue
            total = 0.0
            for known in embs:
                total += float(self.similarity(embedding, known))
            scores.append((name, total / len(embs)))
        # sorted() is stable, so equal scores keep gallery order
        return sorted(scores, key=lambda x: x[1], reverse=True)

    def identify(
        self,
        region: Region,
        embedding: np.ndarray,
        gallery: Mapping[str, Sequence[np.ndarray]],
    ) -> Optional[MatchResult]:
        if not gallery:
            return None

        scores = self.score_subjects(embedding, gallery)
        logger.debug(f"identify top{self.config.topk_debug}={scores[: self.config.topk_debug]}")
        if not scores:
            return None

        best_name, best_score = scores[0]
        if best_score >= float(self.config.threshold):
            return MatchResult(region=region, label=best_name, score=best_score)
        return None

    def identify_all(
        self,
        probes: Iterable[Tuple[Region, np.ndarray]],
        gallery: Mapping[str, Sequence[np.ndarray]],
    ) -> List[MatchResult]:
        """Match every (region, embedding) probe; unmatched probes are left out."""
        probes = list(probes)
        if not probes or not gallery:
            return []

        matches: List[MatchResult] = []
        for region, embedding in probes:
            result = self.identify(region, embedding, gallery)
            if result is not None:
                matches.append(result)

        if self.config.policy == MatchPolicy.UNIQUE_SUBJECT:
            return self._unique_subjects(matches)
        return matches

    @staticmethod
    def _unique_subjects(matches: List[MatchResult]) -> List[MatchResult]:
        """Keep, per subject, only the highest-scoring region (independent of probe order)."""
        best = {}
        for idx, m in enumerate(matches):
            cur = best.get(m.label)
            if cur is None or m.score > matches[cur].score:
                best[m.label] = idx
        keep = sorted(best.values())
        return [matches[i] for i in keep]
