"""
FSRS parameter optimizer.

Fits the 19-weight FSRS vector to a user's review history. Fit quality is
measured with log-loss and RMSE of predicted retrievability against the
observed pass/fail outcome of each review.

Two views of the fit are computed:

* recorded metrics use the stability each review was actually scheduled
  with (`stability_before`), describing how well live scheduling has done;
* replay metrics re-run every card's history through the memory model with
  a candidate weight vector, which is what the search minimizes.

The search is a bounded coordinate descent that only ever accepts a step
that lowers the replay log-loss, so the returned vector never fits the
history worse than the one passed in.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from .constants import (
    MIN_REVIEWS_FOR_OPTIMIZATION,
    PARAMETER_BOUNDS,
)
from .exceptions import DegenerateParametersError
from .models import (
    AlgorithmParameters,
    LearningState,
    ReviewLogEntry,
    check_weights,
)
from .scheduler import retrievability, step_memory

logger = logging.getLogger(__name__)

LOG_LOSS_EPSILON = 1e-7
DEFAULT_MAX_ITERATIONS = 25
INITIAL_STEP = 0.2
MIN_STEP = 0.005
IMPROVEMENT_TOLERANCE = 1e-9


@dataclass
class FitMetrics:
    retention_rate: float
    rmse: float
    log_loss: float
    sample_count: int


@dataclass
class OptimizationResult:
    """
    Outcome of an optimization run.

    `retention_rate`, `rmse` and `log_loss` describe the history as it was
    recorded. `baseline_log_loss` and `optimized_log_loss` are the replay
    losses of the input and returned weight vectors.
    """

    parameters: Tuple[float, ...]
    optimized: bool
    retention_rate: float
    rmse: float
    log_loss: float
    review_count: int
    message: str
    baseline_log_loss: Optional[float] = None
    optimized_log_loss: Optional[float] = None

    def apply_to(self, params: AlgorithmParameters) -> AlgorithmParameters:
        """Settings to use after this run; unchanged unless it optimized."""
        if not self.optimized:
            return params
        return params.with_weights(self.parameters)


def log_loss(predicted: float, actual: int) -> float:
    p = min(max(predicted, LOG_LOSS_EPSILON), 1 - LOG_LOSS_EPSILON)
    return -(actual * math.log(p) + (1 - actual) * math.log(1 - p))


def _score(
    predictions: Sequence[Tuple[float, int]], passed: int, total: int
) -> FitMetrics:
    if not predictions:
        rmse = 0.0
        loss = 0.0
    else:
        rmse = math.sqrt(
            sum((p - y) ** 2 for p, y in predictions) / len(predictions)
        )
        loss = sum(log_loss(p, y) for p, y in predictions) / len(predictions)
    return FitMetrics(
        retention_rate=passed / total if total else 0.0,
        rmse=rmse,
        log_loss=loss,
        sample_count=len(predictions),
    )


def calculate_metrics(history: Sequence[ReviewLogEntry]) -> FitMetrics:
    """
    Fit quality of the history as recorded.

    Predictions use each entry's `stability_before` and `elapsed_days`;
    entries without a stability (first reviews) are skipped for log-loss
    and RMSE but still count towards the retention rate.
    """
    predictions = [
        (retrievability(e.stability_before, e.elapsed_days), int(e.passed))
        for e in history
        if e.stability_before > 0 and e.elapsed_days >= 0
    ]
    passed = sum(1 for e in history if e.passed)
    return _score(predictions, passed, len(history))


def _group_by_card(
    history: Sequence[ReviewLogEntry],
) -> List[List[ReviewLogEntry]]:
    by_card: Dict[UUID, List[ReviewLogEntry]] = defaultdict(list)
    for entry in history:
        by_card[entry.card_id].append(entry)
    return [
        sorted(entries, key=lambda e: e.reviewed_at)
        for entries in by_card.values()
    ]


def replay_predictions(
    card_histories: Sequence[Sequence[ReviewLogEntry]],
    weights: Sequence[float],
) -> List[Tuple[float, int]]:
    """
    Re-run each card's chronological history through the memory model.

    A card whose first logged review did not start from New is seeded with
    the recorded state of that review.

    Raises:
        DegenerateParametersError: If the weights produce non-finite values.
    """
    predictions: List[Tuple[float, int]] = []
    for entries in card_histories:
        first = entries[0]
        state = first.state_before
        stability = first.stability_before
        difficulty = first.difficulty_before
        if state != LearningState.New and stability <= 0:
            state = LearningState.New
        for entry in entries:
            if state != LearningState.New:
                predictions.append(
                    (retrievability(stability, entry.elapsed_days), int(entry.passed))
                )
            state, stability, difficulty = step_memory(
                weights, state, stability, difficulty, entry.elapsed_days, entry.rating
            )
    return predictions


def evaluate_parameters(
    history: Sequence[ReviewLogEntry], weights: Sequence[float]
) -> FitMetrics:
    """Replay metrics of a weight vector over the whole history."""
    predictions = replay_predictions(_group_by_card(history), weights)
    passed = sum(1 for e in history if e.passed)
    return _score(predictions, passed, len(history))


def _replay_loss(
    card_histories: Sequence[Sequence[ReviewLogEntry]],
    weights: Sequence[float],
) -> float:
    try:
        predictions = replay_predictions(card_histories, weights)
    except DegenerateParametersError:
        return math.inf
    if not predictions:
        return 0.0
    return sum(log_loss(p, y) for p, y in predictions) / len(predictions)


def _clip(index: int, value: float) -> float:
    low, high = PARAMETER_BOUNDS[index]
    return min(max(value, low), high)


def _coordinate_descent(
    card_histories: Sequence[Sequence[ReviewLogEntry]],
    start: Sequence[float],
    baseline: float,
    max_iterations: int,
) -> Tuple[List[float], float]:
    weights = list(start)
    best = baseline
    step = INITIAL_STEP
    for iteration in range(max_iterations):
        improved = False
        for i in range(len(weights)):
            delta = step * max(abs(weights[i]), 0.1)
            for direction in (1, -1):
                candidate = _clip(i, weights[i] + direction * delta)
                if candidate == weights[i]:
                    continue
                trial = weights.copy()
                trial[i] = candidate
                loss = _replay_loss(card_histories, trial)
                if loss < best - IMPROVEMENT_TOLERANCE:
                    weights, best = trial, loss
                    improved = True
                    break
        logger.debug(
            f"Optimizer iteration {iteration}: log-loss {best:.6f}, step {step:.4f}"
        )
        if not improved:
            step /= 2
            if step < MIN_STEP:
                break
    return weights, best


def optimize_fsrs_parameters(
    history: Sequence[ReviewLogEntry],
    current_params: AlgorithmParameters,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> OptimizationResult:
    """
    Optimize FSRS weights using review history.

    Args:
        history: Review log entries for one user.
        current_params: The settings currently in use.
        max_iterations: Upper bound on coordinate-descent sweeps.

    Returns:
        OptimizationResult. Below MIN_REVIEWS_FOR_OPTIMIZATION entries the
        current weights are returned with `optimized=False` and a message
        stating how many more reviews are needed.
    """
    recorded = calculate_metrics(history)
    current_weights = tuple(current_params.weights)

    if len(history) < MIN_REVIEWS_FOR_OPTIMIZATION:
        deficit = MIN_REVIEWS_FOR_OPTIMIZATION - len(history)
        logger.info(f"Skipping optimization: {deficit} more reviews needed.")
        return OptimizationResult(
            parameters=current_weights,
            optimized=False,
            retention_rate=recorded.retention_rate,
            rmse=recorded.rmse,
            log_loss=recorded.log_loss,
            review_count=len(history),
            message=f"Need {deficit} more reviews for optimization.",
        )

    card_histories = _group_by_card(history)
    baseline = _replay_loss(card_histories, current_weights)
    weights, best = _coordinate_descent(
        card_histories, current_weights, baseline, max_iterations
    )

    optimized = best < baseline
    parameters = current_weights
    if optimized:
        try:
            parameters = check_weights(weights)
        except DegenerateParametersError as e:
            logger.error(f"Rejecting degenerate optimizer output: {e}")
            optimized = False

    if optimized:
        message = (
            f"Optimized on {len(history)} reviews: log-loss "
            f"{baseline:.4f} -> {best:.4f}."
        )
    else:
        best = baseline
        message = "Current parameters already fit the review history best."

    logger.info(message)
    return OptimizationResult(
        parameters=parameters,
        optimized=optimized,
        retention_rate=recorded.retention_rate,
        rmse=recorded.rmse,
        log_loss=recorded.log_loss,
        review_count=len(history),
        message=message,
        baseline_log_loss=baseline,
        optimized_log_loss=best,
    )
