"""Browser identity rotation.

Some sites render differently (or not at all) for headless user-agents, so
each session presents one of a small closed set of desktop Chrome strings.

Usage::

    from weblook.browser.user_agents import UserAgentPool

    pool = UserAgentPool()
    ua = pool.pick()

    # Deterministic selection for tests
    pool = UserAgentPool(seed=42)
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Desktop Chrome user-agent strings
# ---------------------------------------------------------------------------

USER_AGENTS: tuple[str, ...] = (
    # Chrome on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    # Chrome on Mac
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
)


class UserAgentPool:
    """Uniform random selector over a fixed set of user-agent strings.

    Args:
        agents: The closed set to pick from (defaults to ``USER_AGENTS``).
        seed: Seed for a private generator; same seed, same sequence.
        rng: An explicit ``random.Random`` instance (overrides ``seed``).
    """

    def __init__(
        self,
        agents: Sequence[str] = USER_AGENTS,
        *,
        seed: int | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._agents = tuple(a.strip() for a in agents if a.strip())
        if not self._agents:
            raise ValueError("UserAgentPool needs at least one user-agent string")
        self._rng = rng if rng is not None else random.Random(seed)

    @property
    def agents(self) -> tuple[str, ...]:
        return self._agents

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent: object) -> bool:
        return agent in self._agents

    def pick(self) -> str:
        """Return one user-agent string, uniformly at random."""
        agent = self._rng.choice(self._agents)
        logger.debug("Using user-agent: %s", agent)
        return agent
