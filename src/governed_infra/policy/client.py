"""Fail-closed client for the policy decision point."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Mapping, Protocol

from governed_infra.domain.models import Decision, PolicyDecision, Suggestion

logger = logging.getLogger(__name__)


class PolicyUnavailableError(RuntimeError):
    """The policy engine could not produce a decision."""


class PolicyEvaluator(Protocol):
    def evaluate(
        self,
        action: str,
        args: Mapping[str, Any],
        context: Mapping[str, Any] | None = None,
    ) -> PolicyDecision | Awaitable[PolicyDecision]: ...


EvaluateFn = Callable[..., "PolicyDecision | Awaitable[PolicyDecision]"]


class PolicyDecisionClient:
    """Thin call into a policy engine.

    Any failure to obtain a well-formed decision raises
    ``PolicyUnavailableError``; callers treat that as a block.
    """

    def __init__(self, evaluator: PolicyEvaluator | EvaluateFn) -> None:
        self._evaluate: EvaluateFn = getattr(evaluator, "evaluate", evaluator)

    async def decide(
        self,
        action: str,
        args: Mapping[str, Any],
        context: Mapping[str, Any] | None = None,
    ) -> PolicyDecision:
        try:
            raw = self._evaluate(action, args, context or {})
            if inspect.isawaitable(raw):
                raw = await raw
        except Exception as exc:
            logger.warning("Policy evaluation failed for %s: %s", action, exc)
            raise PolicyUnavailableError(f"Policy evaluation failed: {exc}") from exc
        return self._coerce(raw)

    @staticmethod
    def _coerce(raw: object) -> PolicyDecision:
        if isinstance(raw, PolicyDecision):
            return raw
        if isinstance(raw, Mapping):
            try:
                decision = Decision(str(raw.get("decision", "")).lower())
            except ValueError as exc:
                raise PolicyUnavailableError(
                    f"Policy engine returned unknown decision {raw.get('decision')!r}"
                ) from exc
            suggestions = []
            for item in raw.get("suggestions") or []:
                if isinstance(item, Mapping):
                    suggestions.append(
                        Suggestion(text=str(item.get("text", "")), title=item.get("title"))
                    )
                else:
                    suggestions.append(Suggestion(text=str(item)))
            return PolicyDecision(
                decision=decision,
                reasons=[str(r) for r in raw.get("reasons") or []],
                suggestions=suggestions,
                controls=[str(c) for c in raw.get("controls") or []],
                policy_ids=[str(p) for p in raw.get("policyIds") or []],
            )
        raise PolicyUnavailableError(
            f"Policy engine returned {type(raw).__name__}, expected a decision"
        )
