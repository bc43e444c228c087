"""
Multi-strategy invocation of yt-dlp with automatic fallback.

Strategy order (tried sequentially until one succeeds):
  1. default            — plain invocation, uses stored cookies if configured
  2. guest-android      — Android app client, cookies stripped
  3. guest-ios          — iOS app client, cookies stripped
  4. guest-tv_embedded  — TV embedded player client, cookies stripped

YouTube intermittently blocks the default web client by source IP or account
flag. Switching the player client, and dropping cookies that may be flagged,
is usually enough to get the metadata through.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union
import logging

from .arguments import CREDENTIAL_FLAGS, ArgumentList, Option
from .errors import AllStrategiesFailedError
from .process import invoke

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Strategy:
    """A named identity posture: extra options, and whether cookies are dropped."""
    name: str
    extra_args: Tuple[Option, ...] = ()
    excludes_credentials: bool = False

    def apply(self, base_args: ArgumentList) -> ArgumentList:
        """Effective options for this strategy (URL not included)."""
        args = base_args.extend(self.extra_args)
        if self.excludes_credentials:
            args = args.without(CREDENTIAL_FLAGS)
        return args


def guest_strategy(player_client: str) -> Strategy:
    return Strategy(
        name=f"guest-{player_client}",
        extra_args=(Option('--extractor-args', f'youtube:player_client={player_client}'),),
        excludes_credentials=True,
    )


DEFAULT_STRATEGIES: Tuple[Strategy, ...] = (
    Strategy(name="default"),
    guest_strategy("android"),
    guest_strategy("ios"),
    guest_strategy("tv_embedded"),
)


class StrategyRunner:
    """Runs the tool once per strategy, in order, until one exits with code 0."""

    def __init__(
        self,
        binary: str,
        workdir: Union[str, Path],
        strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
        timeout_seconds: Optional[float] = None,
    ):
        self.binary = binary
        self.workdir = workdir
        self.strategies = tuple(strategies)
        self.timeout_seconds = timeout_seconds

    async def _attempt(self, strategy: Strategy, base_args: ArgumentList, url: str) -> Tuple[Optional[bytes], str]:
        """Returns (stdout, "") on success, (None, error message) on failure."""
        argv = strategy.apply(base_args).to_argv() + [url]
        try:
            result = await invoke(self.binary, argv, self.workdir, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            return None, f"timed out after {self.timeout_seconds:g}s"
        except OSError as e:
            return None, f"could not start {self.binary}: {e}"

        if result.ok:
            return result.stdout, ""
        return None, result.error_message

    async def run(self, base_args: ArgumentList, url: str) -> bytes:
        """
        Try each strategy strictly in sequence and return the first successful stdout.

        Raises:
            AllStrategiesFailedError: carrying the last strategy's error
        """
        total = len(self.strategies)
        last_error = "no strategies configured"
        attempts: List[str] = []

        for idx, strategy in enumerate(self.strategies, 1):
            logger.info(f"🎯 Strategy {idx}/{total}: {strategy.name}")
            stdout, error = await self._attempt(strategy, base_args, url)

            if stdout is not None:
                logger.info(f"✅ Strategy {idx}/{total} ({strategy.name}) succeeded")
                return stdout

            logger.warning(f"⚠️ Strategy {idx}/{total} ({strategy.name}) failed: {error[:200]}")
            attempts.append(f"[{strategy.name}]: {error[:200]}")
            last_error = error

        logger.error(f"❌ All {total} strategies failed for {url}")
        raise AllStrategiesFailedError(last_error, attempts)
