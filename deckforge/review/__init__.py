# ABOUTME: Exposes the content reviewer, density engine and quality ensemble used after slide generation.
# ABOUTME: Keeps a stable module boundary for review capabilities.

from deckforge.review.content_reviewer import ContentReviewer
from deckforge.review.density import DensityLimits, passes_density_check, truncate_to_limits
from deckforge.review.quality_ensemble import QualityReviewEnsemble, QualityReviewOptions

__all__ = [
    "ContentReviewer",
    "DensityLimits",
    "QualityReviewEnsemble",
    "QualityReviewOptions",
    "passes_density_check",
    "truncate_to_limits",
]
