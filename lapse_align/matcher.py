"""
Brute-force descriptor matching with Lowe's ratio test and cross-check.
"""

import numpy as np


class FeatureMatcher:
    """
    Feature matcher using L2 (Euclidean) distance.

    Matches are dictionaries with `queryIdx` (source descriptor index),
    `trainIdx` (reference descriptor index) and `distance`.
    """

    def __init__(self, cross_check=True, ratio_threshold=0.75):
        """
        Initialize feature matcher.

        Args:
            cross_check: Keep only mutual best matches
            ratio_threshold: Lowe's ratio test threshold (0.75 recommended)
        """
        self.cross_check = cross_check
        self.ratio_threshold = ratio_threshold

    def match(self, descriptors1, descriptors2):
        """
        Match features between two sets of descriptors.

        Args:
            descriptors1: Source descriptors (N x D)
            descriptors2: Reference descriptors (M x D)

        Returns:
            List of match dictionaries sorted by ascending distance
        """
        if len(descriptors1) == 0 or len(descriptors2) == 0:
            return []

        distances = self._compute_distance_matrix(
            np.asarray(descriptors1, dtype=np.float32),
            np.asarray(descriptors2, dtype=np.float32))

        forward = self._find_best_matches(distances)

        if self.cross_check:
            # The reverse direction only needs nearest neighbours
            reverse = np.argmin(distances, axis=0)
            forward = [m for m in forward if reverse[m['trainIdx']] == m['queryIdx']]

        forward.sort(key=lambda m: m['distance'])
        return forward

    def _compute_distance_matrix(self, desc1, desc2):
        """
        L2 distance matrix, distances[i, j] = ||desc1[i] - desc2[j]||.

        Uses ||a - b||^2 = ||a||^2 + ||b||^2 - 2 a.b
        """
        sq1 = np.sum(desc1 ** 2, axis=1, keepdims=True)
        sq2 = np.sum(desc2 ** 2, axis=1, keepdims=True)
        sq = sq1 + sq2.T - 2.0 * (desc1 @ desc2.T)
        return np.sqrt(np.maximum(sq, 0.0))

    def _find_best_matches(self, distances):
        """Nearest neighbour per row, kept when it passes the ratio test."""
        if distances.shape[1] < 2:
            return []

        order = np.argsort(distances, axis=1)[:, :2]
        rows = np.arange(distances.shape[0])
        nearest = distances[rows, order[:, 0]]
        second = distances[rows, order[:, 1]]

        matches = []
        for i in np.nonzero((second > 0) & (nearest < self.ratio_threshold * second))[0]:
            matches.append({
                'queryIdx': int(i),
                'trainIdx': int(order[i, 0]),
                'distance': float(nearest[i]),
            })
        return matches


def to_index_pairs(matches):
    """Convert match dictionaries into (source index, reference index) pairs."""
    return [(m['queryIdx'], m['trainIdx']) for m in matches]
