"""
Adaptive Difficulty Controller

Maps a feedback score (0-100) to a difficulty directive for the next
question batch:
- score < 70  -> "easier"
- score > 90  -> "harder"
- otherwise   -> "maintain"
"""

from typing import Optional


EASIER = "easier"
HARDER = "harder"
MAINTAIN = "maintain"


class AdaptiveDifficultyController:
    """Stateless score-to-directive mapping."""

    REMEDIATION_THRESHOLD = 70
    ADVANCE_THRESHOLD = 90

    MIN_LEVEL = 1
    MAX_LEVEL = 5

    def recommend(self, score: float) -> str:
        """
        Directive for a score.

        Args:
            score: Feedback score, 0-100

        Returns:
            "easier", "harder" or "maintain"
        """
        if score < self.REMEDIATION_THRESHOLD:
            return EASIER
        if score > self.ADVANCE_THRESHOLD:
            return HARDER
        return MAINTAIN

    def needs_remediation(self, score: float) -> bool:
        return score < self.REMEDIATION_THRESHOLD

    def next_difficulty_level(self, current: Optional[int], directive: str) -> Optional[int]:
        """Step an integer difficulty level (1-5) in the directive's direction."""
        if current is None:
            return None

        if directive == HARDER:
            return min(current + 1, self.MAX_LEVEL)
        if directive == EASIER:
            return max(current - 1, self.MIN_LEVEL)
        return current
