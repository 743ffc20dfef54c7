"""
Context token budget management.

Treat prompt context as a resource with a budget.

Every budget check is a remote countTokens call, so the selector searches
for the longest fitting prefix with an exponential ramp followed by a
binary search: O(log n) oracle calls instead of one per chunk.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Sequence

from shared.errors import ContextValidationError

from generation.base import TokenCountRequest, TokenCounter

from .chunks import ContextChunk
from .context_builder import build_user_prompt, format_context_chunks

logger = logging.getLogger(__name__)

BUDGET_FLOOR_TOKENS = 400


@dataclass(frozen=True)
class TokenBudget:
    """Prompt token budget for one invocation."""

    max_prompt_tokens: int = 3000
    reserve_output_tokens: int = 512

    @property
    def usable_prompt_tokens(self) -> int:
        """Tokens available for system text + question + context. Never below the floor."""
        return max(self.max_prompt_tokens - self.reserve_output_tokens, BUDGET_FLOOR_TOKENS)


class OracleFailurePolicy(str, Enum):
    """How a failed countTokens call is interpreted."""

    CONSERVATIVE = "conservative"  # failure means "does not fit"
    OPTIMISTIC = "optimistic"  # failure means "fits"
    RETRY_THEN_CONSERVATIVE = "retry_then_conservative"

    @classmethod
    def parse(cls, value) -> "OracleFailurePolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or cls.CONSERVATIVE.value).strip().lower())
        except ValueError:
            raise ContextValidationError(f"Unknown oracle failure policy: {value!r}") from None


def find_max_fitting_prefix(n: int, fits: Callable[[int], bool]) -> int:
    """
    Largest k in [0, n] such that fits(k), assuming fits is monotone.

    Exponential ramp (1, 2, 4, ...) to bracket the boundary, then binary
    search between the last fitting size and the first failing one.
    Results are memoised, so no size is evaluated twice.

    Args:
        n: Number of ordered items
        fits: Predicate for "the first k items fit"

    Returns:
        Maximal fitting prefix length
    """
    if n <= 0:
        return 0

    seen: Dict[int, bool] = {}

    def fits_memo(k: int) -> bool:
        if k not in seen:
            seen[k] = bool(fits(k))
        return seen[k]

    lo = 0
    hi = min(1, n)
    while hi <= n and fits_memo(hi):
        lo = hi
        hi = min(hi * 2, n)
        if hi == lo:
            break

    if hi == lo:
        return lo

    while lo < hi:
        mid = (lo + hi + 1) // 2
        if fits_memo(mid):
            lo = mid
        else:
            hi = mid - 1

    return lo


@dataclass
class PrefixSelection:
    """Result of a budget selection run."""

    chunks: List[ContextChunk]
    count: int
    oracle_calls: int
    oracle_failures: int
    budget_tokens: int


class PrefixBudgetSelector:
    """
    Finds the longest ordered prefix of chunks whose prompt fits the budget.

    Usage:
        selector = PrefixBudgetSelector(counter, budget_tokens=2488, model="gemini-2.0-flash")
        selection = selector.select(chunks, question, system_text)
    """

    def __init__(
        self,
        token_counter: TokenCounter,
        budget_tokens: int,
        model: str,
        failure_policy=OracleFailurePolicy.CONSERVATIVE,
        retry_attempts: int = 1,
    ):
        """
        Args:
            token_counter: countTokens oracle
            budget_tokens: Usable prompt budget (see TokenBudget)
            model: Model the oracle counts for
            failure_policy: Interpretation of a failed count
            retry_attempts: Extra attempts under RETRY_THEN_CONSERVATIVE
        """
        self.token_counter = token_counter
        self.budget_tokens = budget_tokens
        self.model = model
        self.failure_policy = OracleFailurePolicy.parse(failure_policy)
        self.retry_attempts = max(0, int(retry_attempts))
        self.oracle_calls = 0
        self.oracle_failures = 0

    def _count(self, request: TokenCountRequest) -> int:
        self.oracle_calls += 1
        return int(self.token_counter.count_tokens(request))

    def _on_failure(self, request: TokenCountRequest, k: int, error: Exception) -> bool:
        self.oracle_failures += 1
        logger.warning(f"countTokens failed for prefix k={k}: {error}")

        if self.failure_policy == OracleFailurePolicy.OPTIMISTIC:
            return True

        if self.failure_policy == OracleFailurePolicy.RETRY_THEN_CONSERVATIVE:
            for attempt in range(1, self.retry_attempts + 1):
                try:
                    return self._count(request) <= self.budget_tokens
                except Exception as e:
                    self.oracle_failures += 1
                    logger.warning(f"countTokens retry {attempt} failed for k={k}: {e}")

        return False

    def fits(
        self,
        chunks: Sequence[ContextChunk],
        k: int,
        question: str,
        system_text: str,
    ) -> bool:
        """
        Whether the first k chunks plus question and system text fit the budget.

        Any counter failure (error, timeout, open circuit, malformed total) is
        resolved through the failure policy and never reaches the caller.
        """
        request = TokenCountRequest(
            content=build_user_prompt(question, format_context_chunks(chunks[:k])),
            system_instruction=system_text,
            model=self.model,
        )
        try:
            total = self._count(request)
        except Exception as e:
            return self._on_failure(request, k, e)

        logger.debug(f"Prefix k={k}: {total} tokens (budget {self.budget_tokens})")
        return total <= self.budget_tokens

    def select(
        self,
        chunks: Sequence[ContextChunk],
        question: str,
        system_text: str,
    ) -> PrefixSelection:
        """
        Select the maximal fitting prefix.

        Returns:
            PrefixSelection with the kept chunks and oracle call counts
        """
        calls_before = self.oracle_calls
        failures_before = self.oracle_failures

        count = find_max_fitting_prefix(
            len(chunks), lambda k: self.fits(chunks, k, question, system_text)
        )

        selection = PrefixSelection(
            chunks=list(chunks[:count]),
            count=count,
            oracle_calls=self.oracle_calls - calls_before,
            oracle_failures=self.oracle_failures - failures_before,
            budget_tokens=self.budget_tokens,
        )
        logger.info(
            f"Selected {count}/{len(chunks)} chunks within {self.budget_tokens} tokens "
            f"({selection.oracle_calls} countTokens calls)"
        )
        return selection
