"""
Uniform Sampler Module.

Uniform sampling of distinct ids from an integer range, skipping ids
rejected by a predicate. Used to fill up samples when random walks did
not visit enough valid candidates.
"""

import numpy as np
from typing import Callable


# Ranges up to this size are scanned instead of rejection sampled.
SCAN_THRESHOLD = 4096


class UniformSamplerFromRange:
    """
    Draw distinct ids uniformly from [inclusive_min, exclusive_max).

    Example:
        >>> import numpy as np
        >>> sampler = UniformSamplerFromRange(np.random.default_rng(42))
        >>> sampler.sample(0, 100, 98, 5, lambda node: node % 50 == 0)
        array([...])
    """

    def __init__(self, random: np.random.Generator):
        """
        Initialize uniform sampler.

        Args:
            random: Random source
        """
        self.random = random

    def sample(
        self,
        inclusive_min: int,
        exclusive_max: int,
        lower_bound_on_valid_samples_in_range: int,
        number_of_samples: int,
        is_invalid_sample: Callable[[int], bool]
    ) -> np.ndarray:
        """
        Sample distinct valid ids from the range.

        If the number of requested samples is at least the (lower bound on
        the) number of valid ids, every valid id is returned, capped at
        number_of_samples.

        Args:
            inclusive_min: Smallest id in the range
            exclusive_max: Upper bound of the range (exclusive)
            lower_bound_on_valid_samples_in_range: Known minimum number of valid ids
            number_of_samples: Number of ids requested
            is_invalid_sample: Predicate rejecting ids

        Returns:
            Array of at most number_of_samples distinct valid ids
        """
        if number_of_samples <= 0 or exclusive_max <= inclusive_min:
            return np.zeros(0, dtype=np.int64)

        range_size = exclusive_max - inclusive_min
        if (
            number_of_samples >= lower_bound_on_valid_samples_in_range
            or range_size <= SCAN_THRESHOLD
        ):
            return self._sample_by_scan(
                inclusive_min, exclusive_max, number_of_samples, is_invalid_sample
            )

        return self._sample_by_rejection(
            inclusive_min, exclusive_max, number_of_samples, is_invalid_sample
        )

    def _sample_by_scan(
        self,
        inclusive_min: int,
        exclusive_max: int,
        number_of_samples: int,
        is_invalid_sample: Callable[[int], bool]
    ) -> np.ndarray:
        """Collect every valid id and pick number_of_samples of them."""
        valid = np.asarray(
            [node for node in range(inclusive_min, exclusive_max) if not is_invalid_sample(node)],
            dtype=np.int64
        )
        if len(valid) <= number_of_samples:
            return valid
        return self.random.choice(valid, size=number_of_samples, replace=False)

    def _sample_by_rejection(
        self,
        inclusive_min: int,
        exclusive_max: int,
        number_of_samples: int,
        is_invalid_sample: Callable[[int], bool]
    ) -> np.ndarray:
        """Draw until enough distinct valid ids were seen."""
        samples = np.zeros(number_of_samples, dtype=np.int64)
        seen = set()
        added = 0

        while added < number_of_samples:
            candidates = self.random.integers(inclusive_min, exclusive_max, size=number_of_samples)
            for node in candidates.tolist():
                if node in seen or is_invalid_sample(node):
                    continue
                seen.add(node)
                samples[added] = node
                added += 1
                if added == number_of_samples:
                    break

        return samples
