"""Engine configuration management.

This module provides the EngineConfig class for managing run settings
(concurrency, executor, retry policy, refresh and prune behaviour).

Fields left as None are "unset": merge_with() fills them from another
configuration, and the effective_* properties supply documented defaults.
"""

import os
from dataclasses import dataclass
from typing import Optional, Union

from .executors import DEFAULT_WORKERS, Executor
from .retry import RetryPolicy

ENV_PREFIX = "RESOURCEGRAPH_"


def _env_flag(name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Read boolean-like environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str) -> Optional[int]:
    """Read integer environment variable."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {value!r}")


@dataclass
class EngineConfig:
    """Encapsulates run configuration.

    Attributes:
        concurrency_limit: Maximum provider operations in flight
        executor: "threaded", "sequential" or an executor instance
        retry: Backoff policy for retryable provider errors
        refresh: Read live state from the provider before diffing
        prune: Delete recorded resources that are no longer declared
        input_timeout: Seconds to wait on a referenced Output (None = forever)
    """

    concurrency_limit: Optional[int] = None
    executor: Optional[Union[str, Executor]] = None
    retry: Optional[RetryPolicy] = None
    refresh: Optional[bool] = None
    prune: Optional[bool] = None
    input_timeout: Optional[float] = None

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build a configuration from RESOURCEGRAPH_* environment variables.

        Recognised variables: RESOURCEGRAPH_CONCURRENCY,
        RESOURCEGRAPH_EXECUTOR, RESOURCEGRAPH_MAX_RETRIES,
        RESOURCEGRAPH_REFRESH, RESOURCEGRAPH_PRUNE. Missing ones stay unset.
        """
        max_retries = _env_int(f"{ENV_PREFIX}MAX_RETRIES")
        executor = os.getenv(f"{ENV_PREFIX}EXECUTOR") or None
        return cls(
            concurrency_limit=_env_int(f"{ENV_PREFIX}CONCURRENCY"),
            executor=executor.strip().lower() if executor else None,
            retry=RetryPolicy(max_retries=max_retries) if max_retries is not None else None,
            refresh=_env_flag(f"{ENV_PREFIX}REFRESH"),
            prune=_env_flag(f"{ENV_PREFIX}PRUNE"),
        )

    def merge_with(self, parent_config: Optional["EngineConfig"]) -> "EngineConfig":
        """Merge with another configuration, values set here take precedence.

        Example:
            >>> base = EngineConfig.from_env()
            >>> merged = EngineConfig(concurrency_limit=4).merge_with(base)
        """
        if parent_config is None:
            return EngineConfig(
                concurrency_limit=self.concurrency_limit,
                executor=self.executor,
                retry=self.retry,
                refresh=self.refresh,
                prune=self.prune,
                input_timeout=self.input_timeout,
            )

        def pick(mine, theirs):
            return mine if mine is not None else theirs

        return EngineConfig(
            concurrency_limit=pick(self.concurrency_limit, parent_config.concurrency_limit),
            executor=pick(self.executor, parent_config.executor),
            retry=pick(self.retry, parent_config.retry),
            refresh=pick(self.refresh, parent_config.refresh),
            prune=pick(self.prune, parent_config.prune),
            input_timeout=pick(self.input_timeout, parent_config.input_timeout),
        )

    @property
    def effective_executor(self) -> Union[str, Executor]:
        return self.executor if self.executor is not None else "threaded"

    @property
    def effective_concurrency_limit(self) -> int:
        if self.concurrency_limit is not None:
            return self.concurrency_limit
        if self.effective_executor == "sequential":
            return DEFAULT_WORKERS["sequential"]
        return DEFAULT_WORKERS["threaded"]

    @property
    def effective_retry(self) -> RetryPolicy:
        return self.retry if self.retry is not None else RetryPolicy()

    @property
    def effective_refresh(self) -> bool:
        return bool(self.refresh)

    @property
    def effective_prune(self) -> bool:
        return bool(self.prune)
