"""
Bounded Nelder-Mead simplex search.

Derivative-free minimization over a box. Every candidate point is clamped
coordinate-wise to [lower, upper] before it is evaluated, so the search
never leaves the box. Fully deterministic: the same start vertices always
produce the same result.
"""

import math
from dataclasses import dataclass
from typing import Callable, Sequence
import structlog

import numpy as np

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SimplexResult:
    """Best vertex found by the search."""
    point: np.ndarray
    value: float
    iterations: int
    converged: bool


class SimplexSearch:
    """
    Nelder-Mead minimizer with box clamping.

    Terminates when the spread of objective values across the simplex
    falls below tolerance, or after max_iterations.
    """

    def __init__(
        self,
        reflection: float = 1.0,
        expansion: float = 2.0,
        contraction: float = 0.5,
        shrink: float = 0.5,
        tolerance: float = 1e-8,
        max_iterations: int = 500,
        lower: float = 0.01,
        upper: float = 0.99,
    ):
        self.reflection = reflection
        self.expansion = expansion
        self.contraction = contraction
        self.shrink = shrink
        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.lower = lower
        self.upper = upper

    def _clamp(self, point: np.ndarray) -> np.ndarray:
        return np.clip(point, self.lower, self.upper)

    def _evaluate(self, objective: Callable[[np.ndarray], float], point: np.ndarray) -> float:
        value = float(objective(point))
        # NaN would break ordering; treat it as infeasible
        return math.inf if math.isnan(value) else value

    @staticmethod
    def _sort(simplex: list) -> None:
        # Ties are broken on purpose: values equal to 12 decimals keep their
        # earlier position, so on a flat objective the start vertex stays best
        simplex.sort(key=lambda vertex: round(vertex[1], 12))

    def minimize(
        self,
        objective: Callable[[np.ndarray], float],
        vertices: Sequence[np.ndarray],
    ) -> SimplexResult:
        """
        Minimize objective starting from an initial simplex.

        Args:
            objective: Function to minimize; may return math.inf for infeasible points
            vertices: n + 1 start vertices of dimension n

        Returns:
            SimplexResult with the best vertex
        """
        simplex = []
        for vertex in vertices:
            point = self._clamp(np.asarray(vertex, dtype=float))
            simplex.append((point, self._evaluate(objective, point)))

        self._sort(simplex)
        n = len(simplex) - 1

        iterations = 0
        converged = False

        for _ in range(self.max_iterations):
            # inf - inf is NaN, which never counts as converged
            if simplex[n][1] - simplex[0][1] < self.tolerance:
                converged = True
                break

            centroid = np.mean([point for point, _ in simplex[:n]], axis=0)
            worst_point, worst_value = simplex[n]

            reflected = self._clamp(centroid + self.reflection * (centroid - worst_point))
            reflected_value = self._evaluate(objective, reflected)

            if reflected_value < simplex[0][1]:
                expanded = self._clamp(centroid + self.expansion * (reflected - centroid))
                expanded_value = self._evaluate(objective, expanded)

                if expanded_value < reflected_value:
                    simplex[n] = (expanded, expanded_value)
                else:
                    simplex[n] = (reflected, reflected_value)

            elif reflected_value < simplex[n - 1][1]:
                simplex[n] = (reflected, reflected_value)

            else:
                contracted = self._clamp(centroid + self.contraction * (worst_point - centroid))
                contracted_value = self._evaluate(objective, contracted)

                if contracted_value < worst_value:
                    simplex[n] = (contracted, contracted_value)
                else:
                    best_point = simplex[0][0]
                    for i in range(1, n + 1):
                        point = self._clamp(best_point + self.shrink * (simplex[i][0] - best_point))
                        simplex[i] = (point, self._evaluate(objective, point))

            self._sort(simplex)
            iterations += 1

        best_point, best_value = simplex[0]

        logger.debug(
            "simplex_search_finished",
            iterations=iterations,
            converged=converged,
            best_value=best_value,
        )

        return SimplexResult(
            point=best_point.copy(),
            value=best_value,
            iterations=iterations,
            converged=converged,
        )
