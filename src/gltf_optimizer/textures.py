"""Texture sizing strategies.

Textures are classified by name (``"wall_albedo.png"`` is an albedo map)
and resized to a power-of-two square within the strategy's size range.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from gltf_optimizer.config import (
    DEFAULT_TEXTURE_SETTINGS,
    TextureSettings,
    TextureStrategy,
)

logger = logging.getLogger(__name__)

ResizeCallback = Callable[[str, int, int], tuple[int, int]]


def power_of_two(value: float, round_up: bool = False) -> int:
    """Nearest power of two to ``value``.

    Exactly equidistant values round down (``value=3`` gives 2, ``6`` gives 4).
    ``round_up`` always takes the ceiling power instead.
    """
    if value <= 0:
        return 1

    exponent = math.log2(value)
    upper = 2 ** math.ceil(exponent)
    if round_up:
        return upper

    lower = 2 ** math.floor(exponent)
    return lower if (value - lower) <= (upper - value) else upper


def is_power_of_two(value: int) -> bool:
    return value > 0 and (value & (value - 1)) == 0


@dataclass
class TextureStats:
    """Before/after sizing of one texture."""

    texture_name: str
    strategy: str
    original_size: tuple[int, int]
    new_size: tuple[int, int]

    @property
    def pixel_reduction(self) -> float:
        """Fraction of pixels removed, negative when the texture grew."""
        original = self.original_size[0] * self.original_size[1]
        if original == 0:
            return 0.0
        return (original - self.new_size[0] * self.new_size[1]) / original

    @property
    def was_optimal(self) -> bool:
        return self.original_size == self.new_size


@dataclass
class TextureDistribution:
    """Aggregate sizing report over many textures."""

    total: int = 0
    by_strategy: dict[str, int] = field(default_factory=dict)
    size_buckets: dict[str, int] = field(default_factory=dict)
    average_reduction: float = 0.0
    optimal_count: int = 0


class TextureStrategyResolver:
    """Resolves texture names to strategies and computes target sizes.

    Example:
        resolver = TextureStrategyResolver()
        strategy = resolver.resolve("Rock_BaseColor.png")
        width, height = resolver.target_size(3000, 1500, strategy)
    """

    def __init__(self, settings: TextureSettings = DEFAULT_TEXTURE_SETTINGS) -> None:
        settings.validate()
        self.settings = settings

    def resolve(self, texture_name: Optional[str]) -> TextureStrategy:
        """First strategy (in declared order) with a keyword in the name."""
        if not texture_name:
            return self.settings.default_strategy

        for strategy in self.settings.strategies:
            if strategy.matches(texture_name):
                return strategy
        return self.settings.default_strategy

    def is_optimal_size(self, width: int, height: int, strategy: TextureStrategy) -> bool:
        if not self.settings.preserve_optimal_sizes:
            return False
        return (
            is_power_of_two(width)
            and is_power_of_two(height)
            and width == height
            and strategy.min_size <= width <= strategy.max_size
        )

    def target_size(self, width: int, height: int, strategy: TextureStrategy) -> tuple[int, int]:
        """Power-of-two size for a ``width`` x ``height`` texture."""
        threshold = self.settings.skip_resize_threshold
        if width < threshold and height < threshold:
            return width, height

        if self.is_optimal_size(width, height, strategy):
            return width, height

        new_width = power_of_two(width, strategy.round_up)
        new_height = power_of_two(height, strategy.round_up)

        new_width = max(strategy.min_size, min(strategy.max_size, new_width))
        new_height = max(strategy.min_size, min(strategy.max_size, new_height))

        if self.settings.preserve_aspect_ratio and new_width != new_height:
            new_width = new_height = min(new_width, new_height)

        return new_width, new_height

    def size_for(self, texture_name: Optional[str], width: int, height: int) -> tuple[int, int]:
        return self.target_size(width, height, self.resolve(texture_name))

    def stats(self, texture_name: str, width: int, height: int) -> TextureStats:
        strategy = self.resolve(texture_name)
        return TextureStats(
            texture_name=texture_name,
            strategy=strategy.name,
            original_size=(width, height),
            new_size=self.target_size(width, height, strategy),
        )

    def resize_callback(self, log_progress: Optional[bool] = None) -> ResizeCallback:
        """Callback ``(name, width, height) -> (width, height)`` for re-encoders."""
        if log_progress is None:
            log_progress = self.settings.log_progress

        def resize(texture_name: str, width: int, height: int) -> tuple[int, int]:
            stats = self.stats(texture_name, width, height)
            if log_progress:
                if stats.was_optimal:
                    logger.info("Texture %r already optimal at %dx%d", texture_name, width, height)
                else:
                    logger.info(
                        "Texture %r [%s] %dx%d -> %dx%d (%.1f%% fewer pixels)",
                        texture_name,
                        stats.strategy,
                        width,
                        height,
                        *stats.new_size,
                        stats.pixel_reduction * 100,
                    )
            return stats.new_size

        return resize

    def analyze(self, textures: Iterable[tuple[str, int, int]]) -> TextureDistribution:
        """Summarize how a set of ``(name, width, height)`` textures would be resized."""
        report = TextureDistribution()
        total_reduction = 0.0

        for name, width, height in textures:
            stats = self.stats(name, width, height)
            report.total += 1
            report.by_strategy[stats.strategy] = report.by_strategy.get(stats.strategy, 0) + 1

            bucket = f"{stats.new_size[0]}x{stats.new_size[1]}"
            report.size_buckets[bucket] = report.size_buckets.get(bucket, 0) + 1

            total_reduction += stats.pixel_reduction
            if stats.was_optimal:
                report.optimal_count += 1

        if report.total:
            report.average_reduction = total_reduction / report.total
        return report


_default_resolver: Optional[TextureStrategyResolver] = None


def _resolver() -> TextureStrategyResolver:
    global _default_resolver
    if _default_resolver is None:
        _default_resolver = TextureStrategyResolver()
    return _default_resolver


# Convenience functions
def get_texture_strategy(texture_name: Optional[str]) -> TextureStrategy:
    """Strategy for ``texture_name`` under the default settings."""
    return _resolver().resolve(texture_name)


def target_size(width: int, height: int, strategy: TextureStrategy) -> tuple[int, int]:
    """Target size under the default settings."""
    return _resolver().target_size(width, height, strategy)
