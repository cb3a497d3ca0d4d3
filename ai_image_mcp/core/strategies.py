"""Ordered fallback chains over alternative remote paths.

Architectural role:
    Some operations can be served by more than one remote path. Instead of
    nested try/except blocks in each tool handler, a `StrategyChain` walks an
    ordered list of named strategies and moves to the next one only when the
    current failure is *promotable*.

Chains defined here:
    - Prompt optimization: job manager -> direct endpoint -> local heuristic.
      The heuristic never fails, so the chain always produces a result unless
      a non-promotable error (bad request, unauthorized) stops it.
    - Image-to-image submission (auto mode): job endpoint -> sync endpoint.
      Only "endpoint missing / unreachable" on submission is promotable; the
      chain is applied to submission only, so an accepted job is never
      resubmitted through the other path.

Error handling strategy:
    Non-promotable errors and the error of the last strategy propagate
    unchanged. Each promotion is logged at warning level.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

from ai_image_mcp.errors import ImageGatewayError, OperationTimeoutError, RemoteServiceError
from ai_image_mcp.remote.schemas import OptimizationResult, OptimizeRequest


T = TypeVar("T")

DEFAULT_MODEL = "dreamshaper8"
HEURISTIC_NEGATIVE_PROMPT = "blurry, low quality, bad anatomy"
HEURISTIC_PARAMS = {"guidance_scale": 7.5, "steps": 20, "width": 512, "height": 512}

OPTIMIZE_PROMOTABLE_CATEGORIES = frozenset({"not_found", "unavailable", "server_error", "rate_limited"})
SUBMISSION_PROMOTABLE_CATEGORIES = frozenset({"not_found", "unavailable"})


@dataclass(frozen=True)
class Strategy(Generic[T]):
    name: str
    run: Callable[[], Awaitable[T]]


@dataclass
class ChainResult(Generic[T]):
    """Value produced by the first strategy that succeeded."""

    value: T
    strategy: str
    skipped: list[tuple[str, str]] = field(default_factory=list)


class StrategyChain(Generic[T]):
    """Runs strategies in order until one succeeds.

    Args:
        name: Label used in log lines.
        strategies: Ordered, non-empty strategy list.
        promotable: Predicate deciding whether an error moves to the next
            strategy.
    """

    def __init__(
        self,
        name: str,
        strategies: Sequence[Strategy[T]],
        promotable: Callable[[BaseException], bool],
        logger: logging.Logger | None = None,
    ) -> None:
        if not strategies:
            raise ValueError("StrategyChain needs at least one strategy")
        self.name = name
        self.strategies = list(strategies)
        self.promotable = promotable
        self.logger = logger or logging.getLogger(__name__)

    async def run(self) -> ChainResult[T]:
        skipped: list[tuple[str, str]] = []

        for strategy, following in zip(self.strategies, self.strategies[1:]):
            try:
                value = await strategy.run()
            except ImageGatewayError as exc:
                if not self.promotable(exc):
                    raise
                self.logger.warning(
                    "%s: %s failed (%s); falling back to %s", self.name, strategy.name, exc, following.name
                )
                skipped.append((strategy.name, str(exc)))
                continue
            return ChainResult(value=value, strategy=strategy.name, skipped=skipped)

        # Errors from the last strategy always propagate.
        last = self.strategies[-1]
        return ChainResult(value=await last.run(), strategy=last.name, skipped=skipped)


# ============================================================
# Promotion rules
# ============================================================

def optimization_promotable(exc: BaseException) -> bool:
    if isinstance(exc, OperationTimeoutError):
        return True
    return isinstance(exc, RemoteServiceError) and exc.remote_category in OPTIMIZE_PROMOTABLE_CATEGORIES


def submission_promotable(exc: BaseException) -> bool:
    return isinstance(exc, RemoteServiceError) and exc.remote_category in SUBMISSION_PROMOTABLE_CATEGORIES


# ============================================================
# Prompt optimization
# ============================================================

def basic_optimization(request: OptimizeRequest) -> OptimizationResult:
    """Local prompt enhancement used when no remote optimizer answers."""
    prompt = request.query
    if "high quality" not in request.query:
        prompt += ", high quality"
    if "detailed" not in request.query:
        prompt += ", detailed"

    return OptimizationResult(
        prompt=prompt,
        negative_prompt=HEURISTIC_NEGATIVE_PROMPT,
        suggested_model=request.model or DEFAULT_MODEL,
        recommended_params=dict(HEURISTIC_PARAMS),
    )


def optimization_chain(client: Any, request: OptimizeRequest, logger: logging.Logger | None = None) -> StrategyChain[OptimizationResult]:
    async def heuristic() -> OptimizationResult:
        return basic_optimization(request)

    return StrategyChain(
        "optimize_parameters",
        [
            Strategy("job_manager", lambda: client.optimize_via_job_manager(request)),
            Strategy("remote", lambda: client.optimize_direct(request)),
            Strategy("heuristic", heuristic),
        ],
        optimization_promotable,
        logger=logger,
    )


async def optimize_parameters(
    client: Any,
    request: OptimizeRequest,
    logger: logging.Logger | None = None,
) -> ChainResult[OptimizationResult]:
    """Optimize a prompt via the first optimizer that answers."""
    return await optimization_chain(client, request, logger).run()
