"""Map stabilization scores and match statistics to a 0-1 confidence."""

PERFECT_SCORE = 0.5
GOOD_SCORE = 20.0
MIN_CONFIDENCE = 0.3

OPTIMAL_MATCH_COUNT = 100
MATCH_FACTOR_WEIGHT = 0.4
INLIER_FACTOR_WEIGHT = 0.6


def confidence_from_score(score):
    """
    Confidence for a face or body stabilization score (pixels, lower is better).

    Scores under 0.5 give 1.0, scores under 20 fall linearly from 0.99 to
    0.7, and larger scores keep falling to a floor of 0.3.
    """
    if score < PERFECT_SCORE:
        return 1.0
    if score < GOOD_SCORE:
        return 0.7 + (GOOD_SCORE - score) / GOOD_SCORE * 0.29
    return max(MIN_CONFIDENCE, 0.7 - (score - GOOD_SCORE) / 100.0 * 0.4)


def landscape_confidence(match_count, inlier_count, min_inlier_ratio=0.3):
    """
    Confidence for a single-shot landscape alignment.

    Blends how many matches were found (saturating at 100) with how far the
    inlier ratio sits above `min_inlier_ratio`.
    """
    if match_count <= 0:
        return 0.0
    inlier_ratio = inlier_count / float(match_count)
    match_factor = min(match_count / float(OPTIMAL_MATCH_COUNT), 1.0)
    inlier_factor = (inlier_ratio - min_inlier_ratio) / (1.0 - min_inlier_ratio)
    inlier_factor = min(max(inlier_factor, 0.0), 1.0)
    confidence = match_factor * MATCH_FACTOR_WEIGHT + inlier_factor * INLIER_FACTOR_WEIGHT
    return min(max(confidence, 0.0), 1.0)
