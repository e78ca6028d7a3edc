"""
Model Router — resolves an opaque model string to a provider.

Rules are evaluated in declared order and the first match wins. The
table is fixed when the router is built; there is no runtime inference.
A model string matching two specific rules goes to whichever was
registered first, so order the table deliberately.

Usage:
    from onellm.llm.router import ModelRouter

    router = ModelRouter()                 # DEFAULT_ROUTING_RULES
    router.resolve("gpt-4")                # Provider.OPENAI
    router.route("local/mistral")          # Route(OLLAMA, "mistral", ...)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from onellm.exceptions import RoutingConfigurationError, UnroutableModelError
from onellm.llm.llm_config import (
    DEFAULT_ROUTING_RULES,
    MatchKind,
    Provider,
    RoutingRule,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Route:
    """Outcome of routing one model string."""

    provider: Provider
    model: str          # Provider-native model name
    rule: RoutingRule


class ModelRouter:
    """
    Deterministic, immutable model-string → provider resolver.

    Thread-safe: the rule tuple is never mutated after construction.
    """

    def __init__(self, rules: Optional[Iterable[RoutingRule]] = None):
        self._rules: tuple[RoutingRule, ...] = tuple(
            DEFAULT_ROUTING_RULES if rules is None else rules
        )
        self._validate()

    @property
    def rules(self) -> tuple[RoutingRule, ...]:
        return self._rules

    @property
    def has_catch_all(self) -> bool:
        return any(rule.is_catch_all for rule in self._rules)

    def resolve(self, model: str) -> Provider:
        """Return the provider that must serve ``model``."""
        return self.route(model).provider

    def route(self, model: str) -> Route:
        """Return provider, native model name, and the matching rule."""
        for rule in self._rules:
            if rule.matches(model):
                return Route(
                    provider=rule.provider,
                    model=rule.native_model(model),
                    rule=rule,
                )
        raise UnroutableModelError(model)

    def describe(self) -> list[str]:
        return [rule.display for rule in self._rules]

    # --- Validation ---

    def _validate(self) -> None:
        if not self._rules:
            raise RoutingConfigurationError("Routing table is empty")

        catch_all_positions = [
            i for i, rule in enumerate(self._rules) if rule.is_catch_all
        ]
        if len(catch_all_positions) > 1:
            raise RoutingConfigurationError(
                f"Routing table has {len(catch_all_positions)} catch-all rules; "
                f"exactly one is allowed",
                details={"positions": catch_all_positions},
            )
        if catch_all_positions and catch_all_positions[0] != len(self._rules) - 1:
            raise RoutingConfigurationError(
                "Catch-all rule must be the last rule; it would shadow "
                "every rule after it",
                details={"position": catch_all_positions[0]},
            )
        if not catch_all_positions:
            logger.warning(
                "routing_table_without_catch_all",
                extra={"rules": len(self._rules)},
            )

        # First-registered wins. Flag rules an earlier one fully shadows.
        for i, later in enumerate(self._rules):
            if later.kind not in (MatchKind.PREFIX, MatchKind.EXACT):
                continue
            for earlier in self._rules[:i]:
                if earlier.kind is MatchKind.PREFIX and later.value.startswith(earlier.value):
                    shadowed = True
                elif earlier.kind is MatchKind.EXACT and later.kind is MatchKind.EXACT:
                    shadowed = earlier.value == later.value
                else:
                    shadowed = False
                if shadowed:
                    logger.warning(
                        "routing_rule_shadowed",
                        extra={
                            "rule": later.display,
                            "shadowed_by": earlier.display,
                        },
                    )
                    break
