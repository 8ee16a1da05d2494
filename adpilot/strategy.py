"""Strategy chain — model-assisted first, deterministic fallback last.

Decision and reflection both follow the same shape: ask the reasoning
service, and if it is missing, slow, or talks nonsense, apply fixed
rules. Each step is a Strategy; a StrategyChain tries them in order and
returns the first result along with the name of the strategy that
produced it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from adpilot.exceptions import StrategyUnavailable

_logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT")
ResultT = TypeVar("ResultT")


class Strategy(ABC, Generic[RequestT, ResultT]):
    """One way of turning a request into a typed result."""

    name: str = "strategy"

    @abstractmethod
    async def run(self, request: RequestT) -> ResultT:
        """Produce a result or raise StrategyUnavailable."""


@dataclass
class StrategyOutcome(Generic[ResultT]):
    result: ResultT
    strategy: str
    skipped: list[str] = field(default_factory=list)


class StrategyChain(Generic[RequestT, ResultT]):
    """Runs strategies in order until one produces a result."""

    def __init__(self, strategies: list[Strategy[RequestT, ResultT]]) -> None:
        if not strategies:
            raise ValueError("StrategyChain needs at least one strategy")
        self._strategies = strategies

    @property
    def names(self) -> list[str]:
        return [s.name for s in self._strategies]

    async def run(self, request: RequestT) -> StrategyOutcome[ResultT]:
        skipped: list[str] = []
        for strategy in self._strategies:
            try:
                result = await strategy.run(request)
            except StrategyUnavailable as e:
                _logger.info("Strategy %s unavailable: %s", strategy.name, e)
                skipped.append(f"{strategy.name}: {e}")
                continue
            return StrategyOutcome(result=result, strategy=strategy.name, skipped=skipped)
        raise StrategyUnavailable("; ".join(skipped) or "no strategy produced a result")
