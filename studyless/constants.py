"""
FSRS algorithm constants.

This module contains static FSRS (Free Spaced Repetition Scheduler) algorithm parameters.
No runtime configuration or path defaults - pure constants only.
"""
from datetime import timedelta
from typing import Tuple

# Default FSRS-5 parameters (weights 'w'), tuned for average students.
# Per-user vectors of the same length are produced by the optimizer.
DEFAULT_PARAMETERS: Tuple[float, ...] = (
    0.4072,  # w[0]  initial stability for Again
    1.1829,  # w[1]  initial stability for Hard
    3.1262,  # w[2]  initial stability for Good
    15.4722, # w[3]  initial stability for Easy
    7.2102,  # w[4]  initial difficulty baseline
    0.5316,  # w[5]  initial difficulty rating slope
    1.0651,  # w[6]  difficulty update step
    0.0234,  # w[7]  difficulty mean reversion
    1.616,   # w[8]  recall stability growth
    0.1544,  # w[9]  recall stability saturation
    1.0824,  # w[10] recall retrievability factor
    1.9813,  # w[11] lapse stability scale
    0.0953,  # w[12] lapse difficulty exponent
    0.2975,  # w[13] lapse stability exponent
    2.2042,  # w[14] lapse retrievability factor
    0.2407,  # w[15] hard penalty
    2.9466,  # w[16] easy bonus
    0.5034,  # w[17] short-term stability rate
    0.6567,  # w[18] short-term stability offset
)

PARAMETER_COUNT: int = len(DEFAULT_PARAMETERS)

# Lower/upper bounds the optimizer keeps each weight within.
PARAMETER_BOUNDS: Tuple[Tuple[float, float], ...] = (
    (0.001, 100.0),
    (0.001, 100.0),
    (0.001, 100.0),
    (0.001, 100.0),
    (1.0, 10.0),
    (0.001, 4.0),
    (0.001, 4.0),
    (0.001, 0.75),
    (0.0, 4.5),
    (0.0, 0.8),
    (0.001, 3.5),
    (0.001, 5.0),
    (0.001, 0.25),
    (0.001, 0.9),
    (0.0, 4.0),
    (0.0, 1.0),
    (1.0, 6.0),
    (0.0, 2.0),
    (0.0, 2.0),
)

# Forgetting curve: R(t) = (1 + DECAY_FACTOR * t / S) ** -DECAY_POWER
DECAY_FACTOR: float = 0.5
DECAY_POWER: float = 0.5

# Default desired retention rate if not specified elsewhere.
DEFAULT_DESIRED_RETENTION: float = 0.9

DEFAULT_MAXIMUM_INTERVAL: int = 36500  # 100 years
DEFAULT_LEECH_THRESHOLD: int = 6

# Account used when no user is given.
DEFAULT_USER_ID: str = "default"

DEFAULT_LEARNING_STEPS: Tuple[timedelta, ...] = (timedelta(minutes=1),)
DEFAULT_RELEARNING_STEPS: Tuple[timedelta, ...] = (timedelta(minutes=10),)

MIN_STABILITY: float = 0.01
MIN_DIFFICULTY: float = 1.0
MAX_DIFFICULTY: float = 10.0

# History gates for the optimizer, retention advisor and insights.
MIN_REVIEWS_FOR_OPTIMIZATION: int = 400
MIN_REVIEWS_FOR_OPTIMAL_RETENTION: int = 100
MIN_REVIEWS_FOR_INSIGHTS: int = 50

# Reviews answered faster than this are counted as suspicious.
SUSPICIOUS_REVIEW_MS: int = 1000

RECOMMENDED_RETENTION = {
    "efficiency": 0.80,
    "balanced": 0.90,
    "mastery": 0.95,
}
