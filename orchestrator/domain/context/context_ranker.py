from typing import Dict, Optional
from datetime import datetime

from orchestrator.domain.models import Block, ContextItem, GitHubEntity, utcnow
from orchestrator.domain.models.entities import ensure_utc


BLOCK_STATUS_WEIGHTS = {"in_progress": 0.3, "blocked": 0.2}
BLOCK_PRIORITY_WEIGHTS = {"urgent": 0.2, "high": 0.15, "medium": 0.1, "low": 0.05}
BLOCK_LANE_WEIGHTS = {"current": 0.2, "next": 0.15, "goals": 0.1, "vision": 0.05, "context": 0.05}

CONTEXT_TYPE_WEIGHTS = {
    "decision": 0.25,
    "blocker": 0.2,
    "insight": 0.15,
    "solution": 0.15,
    "reference": 0.1,
    "note": 0.05,
}

GITHUB_TYPE_WEIGHTS = {"pr": 0.2, "issue": 0.15, "commit": 0.1}
GITHUB_ACTIVE_STATUSES = {"open", "active"}

# Textual relevance tuning
MIN_TERM_LENGTH = 3
PER_OCCURRENCE_BOOST = 0.1
PER_TERM_CAP = 0.3
MULTI_TERM_MULTIPLIER = 0.2
TEXTUAL_CAP = 0.5


def _value(field) -> str:
    return field.value if hasattr(field, "value") else str(field)


class ContextRanker:
    """Scores projected entities for inclusion in a context preview"""

    def __init__(self, now: Optional[datetime] = None):
        self._now = now

    @property
    def now(self) -> datetime:
        return self._now or utcnow()

    def _days_since(self, timestamp: datetime) -> float:
        return (self.now - ensure_utc(timestamp)).total_seconds() / 86400

    def score_block(self, block: Block) -> float:
        """Base score for a block"""

        score = 0.5
        score += BLOCK_STATUS_WEIGHTS.get(_value(block.status), 0.0)
        score += BLOCK_PRIORITY_WEIGHTS.get(_value(block.priority), 0.0)

        # Recently worked blocks matter most
        if block.last_worked_at:
            days = self._days_since(block.last_worked_at)
            if days < 1:
                score += 0.2
            elif days < 7:
                score += 0.1

        score += BLOCK_LANE_WEIGHTS.get(_value(block.lane), 0.0)

        return min(score, 1.0)

    def score_context_item(self, item: ContextItem) -> float:
        """Base score for a context item"""

        score = 0.4
        score += CONTEXT_TYPE_WEIGHTS.get(_value(item.type), 0.0)

        days = self._days_since(item.created_at)
        if days < 1:
            score += 0.15
        elif days < 7:
            score += 0.1
        elif days < 30:
            score += 0.05

        return min(score, 1.0)

    def score_github_entity(self, entity: GitHubEntity) -> float:
        """Base score for a GitHub entity"""

        score = 0.3
        score += GITHUB_TYPE_WEIGHTS.get(_value(entity.provider_type), 0.0)

        if entity.status in GITHUB_ACTIVE_STATUSES:
            score += 0.1

        days = self._days_since(entity.created_at)
        if days < 1:
            score += 0.1
        elif days < 7:
            score += 0.05

        return min(score, 1.0)

    def calculate_textual_relevance(self, query: str, content: str) -> float:
        """Term-frequency boost of content for a query"""

        content_lower = content.lower()
        relevance = 0.0
        match_count = 0

        for term in query.lower().split():
            if len(term) < MIN_TERM_LENGTH:
                continue

            occurrences = content_lower.count(term)
            if occurrences > 0:
                match_count += 1
                relevance += min(occurrences * PER_OCCURRENCE_BOOST, PER_TERM_CAP)

        # Boost if multiple query terms match
        if match_count > 1:
            relevance *= 1 + (match_count - 1) * MULTI_TERM_MULTIPLIER

        return min(relevance, TEXTUAL_CAP)

    @staticmethod
    def combine(base: float, textual: float = 0.0, semantic: float = 0.0) -> float:
        """Final score, clamped to [0, 1]"""
        return max(0.0, min(1.0, base + textual + semantic))

    @staticmethod
    def semantic_boosts(similarities: Dict[str, float]) -> Dict[str, float]:
        """Turn similarities into boosts above the 0.5 floor"""
        return {item_id: max(0.0, similarity - 0.5) for item_id, similarity in similarities.items()}
