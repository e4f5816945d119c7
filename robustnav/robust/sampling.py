"""
Subset sampling and iteration bounds for robust estimators.

Uniform sampling (RANSAC, LMedS, MSAC) draws every subset uniformly from
all samples. Progressive sampling (PROSAC, PROMedS) follows the growth
function of Chum & Matas, "Matching with PROSAC - Progressive Sample
Consensus" (CVPR 2005): subsets are drawn from a prefix of the samples
sorted by decreasing quality, and the prefix grows as trials proceed.

Iteration bound (standard RANSAC stopping criterion):
    k = log(1 - p) / log(1 - wˢ)
where p is the required confidence, w the inlier ratio and s the subset size.
"""

import math
from typing import Optional

import numpy as np
from scipy import stats

# PROSAC: probability that an incorrect model is supported by a random sample
DEFAULT_BETA = 0.01
# PROSAC: maximum probability that a better, undetected solution exists
DEFAULT_ETA0 = 0.05


def compute_iterations(
    inlier_ratio: float,
    subset_size: int,
    confidence: float,
    max_iterations: int,
) -> int:
    """
    Number of trials needed to draw an outlier-free subset.

    Args:
        inlier_ratio: Current best inlier ratio w, in [0, 1].
        subset_size: Subset size s.
        confidence: Required confidence p, in (0, 1).
        max_iterations: Upper bound of the result.

    Returns:
        ceil(log(1 - p) / log(1 - wˢ)) clipped to [1, max_iterations].

    Example:
        >>> compute_iterations(0.5, 4, 0.99, 5000)
        72
    """
    p_good = inlier_ratio ** subset_size
    if p_good >= 1.0:
        return 1
    if p_good <= 0.0:
        return max_iterations

    denominator = math.log1p(-p_good)
    if denominator == 0.0:
        return max_iterations
    iterations = math.ceil(math.log(1.0 - confidence) / denominator)
    return int(min(max(iterations, 1), max_iterations))


class UniformSubsetSampler:
    """Draws subsets uniformly at random without replacement."""

    def __init__(self, num_samples: int, subset_size: int, rng: np.random.Generator):
        if subset_size > num_samples:
            raise ValueError(
                f"subset_size ({subset_size}) exceeds number of samples ({num_samples})"
            )
        self.num_samples = num_samples
        self.subset_size = subset_size
        self.rng = rng

    def next_subset(self) -> np.ndarray:
        return self.rng.choice(self.num_samples, size=self.subset_size, replace=False)


class ProgressiveSubsetSampler:
    """
    PROSAC semi-random sampler over quality-sorted samples.

    The t-th subset contains the n-th best sample plus s-1 samples drawn
    from the n-1 best ones, where n grows with t following:
        T_{n+1} = T_n (n + 1) / (n + 1 - s)
        T'_{n+1} = T'_n + ceil(T_{n+1} - T_n)
    Once n reaches the stopping size n* and T'_n < t, subsets are drawn
    uniformly from the n* best samples.

    Attributes:
        sorted_indices: Sample indices sorted by decreasing quality.
        n: Size of the current hypothesis generation set.
        n_star: Upper limit of n, lowered by the estimator's stopping rule.
        t: Number of subsets drawn so far.
    """

    def __init__(
        self,
        quality_scores: np.ndarray,
        subset_size: int,
        max_iterations: int,
        rng: np.random.Generator,
    ):
        quality_scores = np.asarray(quality_scores, dtype=float)
        num_samples = len(quality_scores)
        if subset_size > num_samples:
            raise ValueError(
                f"subset_size ({subset_size}) exceeds number of samples ({num_samples})"
            )

        # Stable sort keeps original order among equal scores
        self.sorted_indices = np.argsort(-quality_scores, kind="stable")
        self.num_samples = num_samples
        self.subset_size = subset_size
        self.rng = rng

        m = subset_size
        # T_n for n = m: expected number of subsets from U_m among T_N samples
        ratios = (m - np.arange(m)) / (num_samples - np.arange(m))
        self._t_n = max_iterations * float(np.prod(ratios))
        self._t_n_prime = 1
        self.n = m
        self.n_star = num_samples
        self.t = 0

    def next_subset(self) -> np.ndarray:
        m = self.subset_size
        self.t += 1

        if self.t > self._t_n_prime and self.n < self.n_star:
            t_n_next = self._t_n * (self.n + 1) / (self.n + 1 - m)
            self._t_n_prime += int(math.ceil(t_n_next - self._t_n))
            self._t_n = t_n_next
            self.n += 1

        if self._t_n_prime < self.t:
            positions = self.rng.choice(self.n, size=m, replace=False)
        else:
            others = self.rng.choice(self.n - 1, size=m - 1, replace=False)
            positions = np.append(others, self.n - 1)

        return self.sorted_indices[positions]


def non_random_minimum_inliers(
    n: np.ndarray,
    subset_size: int,
    beta: float = DEFAULT_BETA,
    eta0: float = DEFAULT_ETA0,
) -> np.ndarray:
    """
    Smallest inlier count in the n best samples that is unlikely to be random.

    Normal approximation of the binomial non-randomness test of PROSAC:
        I_min(n) = s + max(1, ceil(μ + z σ)),
        μ = (n - s) β,  σ = √((n - s) β (1 - β))
    with z the (1 - η0) quantile of the standard normal distribution. The
    s samples a candidate was built from always support it, so at least one
    more supporting sample is required.

    Args:
        n: Prefix sizes (array of ints ≥ subset_size).
        subset_size: Subset size s.
        beta: Probability that a random sample supports a wrong model.
        eta0: Accepted probability of a random (non-significant) support.

    Returns:
        Array of minimum inlier counts, same shape as n.
    """
    n = np.asarray(n, dtype=float)
    z = stats.norm.ppf(1.0 - eta0)
    mu = (n - subset_size) * beta
    sigma = np.sqrt((n - subset_size) * beta * (1.0 - beta))
    return subset_size + np.maximum(1.0, np.ceil(mu + z * sigma))


def prosac_stopping_size(
    sorted_inliers: np.ndarray,
    subset_size: int,
    confidence: float,
    max_iterations: int,
    beta: float = DEFAULT_BETA,
    eta0: float = DEFAULT_ETA0,
) -> Optional[tuple]:
    """
    Choose PROSAC's stopping size n* and its iteration bound.

    Among prefixes of the quality-sorted samples that pass the
    non-randomness test, picks the one whose maximality bound
    k_n = log(1 - p) / log(1 - (I_n / n)ˢ) is smallest.

    Args:
        sorted_inliers: Inlier flags of the best candidate, ordered by
            decreasing quality.
        subset_size: Subset size s.
        confidence: Required confidence p.
        max_iterations: Upper bound of the returned iteration count.

    Returns:
        (n_star, k_n_star), or None if no prefix passes the test.
    """
    num_samples = len(sorted_inliers)
    if num_samples < subset_size:
        return None

    cumulative = np.cumsum(np.asarray(sorted_inliers, dtype=int))
    sizes = np.arange(subset_size, num_samples + 1)
    inlier_counts = cumulative[sizes - 1]
    passing = inlier_counts >= non_random_minimum_inliers(sizes, subset_size, beta, eta0)
    if not np.any(passing):
        return None

    best = None
    for n, count in zip(sizes[passing], inlier_counts[passing]):
        k = compute_iterations(count / n, subset_size, confidence, max_iterations)
        # Ties favour the larger set, which is better supported
        if best is None or k <= best[1]:
            best = (int(n), k)
    return best
