"""tqdm progress bar over the resources of a run."""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from ..callbacks import CallbackContext, DeploymentCallback

DEBUG_ENV = "RESOURCEGRAPH_PROGRESS_DEBUG"


def _in_notebook() -> bool:
    try:
        get_ipython  # type: ignore[name-defined]  # noqa: B018
    except NameError:
        return False
    return True


@dataclass
class ProgressConfig:
    """Settings shared by every bar a ProgressCallback opens."""

    enable: bool = True
    leave: bool = True
    bar_format: str = (
        "{desc} {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt} resources "
        "[{elapsed}<{remaining}]{postfix}"
    )
    debug: bool = False


class ProgressBackend(Protocol):
    """Opens and closes progress bars (tqdm-compatible objects)."""

    name: str

    def create_bar(self, desc: str, total: Optional[int] = None, leave: bool = True) -> Any:
        ...

    def close_bar(self, bar: Any) -> None:
        ...


class TqdmBackend:
    """Backend built on a tqdm class (console or notebook flavour)."""

    def __init__(self, config: ProgressConfig, notebook: bool = False):
        if notebook:
            from tqdm.auto import tqdm
        else:
            from tqdm import tqdm

        self.config = config
        self.tqdm = tqdm
        self.name = "notebook" if notebook else "std"

    def create_bar(self, desc: str, total: Optional[int] = None, leave: bool = True) -> Any:
        return self.tqdm(
            desc=desc,
            total=total,
            leave=leave,
            unit="resource",
            dynamic_ncols=True,
            bar_format=self.config.bar_format,
        )

    def close_bar(self, bar: Any) -> None:
        bar.close()


def create_backend(config: ProgressConfig) -> ProgressBackend:
    """Pick the notebook backend inside IPython, the console one otherwise."""
    return TqdmBackend(config, notebook=_in_notebook())


class ProgressCallback(DeploymentCallback):
    """Live progress bar over the resources of a run.

    The bar advances once per resource reaching a terminal state and its
    postfix shows how many resources were created, updated, failed, etc.

    Example:
        >>> from resourcegraph.telemetry import ProgressCallback
        >>> report = run(specs, provider, callbacks=[ProgressCallback()])
    """

    def __init__(self, enable: bool = True, backend: Optional[ProgressBackend] = None):
        value = os.getenv(DEBUG_ENV, "")
        self.config = ProgressConfig(
            enable=enable,
            debug=value.strip().lower() in {"1", "true", "yes", "on"},
        )
        self.backend = backend or create_backend(self.config)
        self._bars: Dict[str, Any] = {}
        self._counts: Dict[str, Dict[str, int]] = {}
        self._trace(f"enable={self.config.enable} backend={self.backend.name}")

    def _trace(self, message: str) -> None:
        if self.config.debug:
            print(f"[ProgressCallback] {message}")

    def _advance(self, ctx: CallbackContext, label: str) -> None:
        run_id = ctx.current_run_id
        bar = self._bars.get(run_id)
        if bar is None:
            return
        counts = self._counts[run_id]
        counts[label] = counts.get(label, 0) + 1
        bar.set_postfix(counts, refresh=False)
        bar.update(1)

    def on_run_start(self, run_id: str, graph, ctx: CallbackContext) -> None:
        if not self.config.enable:
            return
        total = ctx.get_run_metadata(run_id).get("total_nodes", len(graph))
        self._trace(f"open bar run={run_id} total={total}")
        self._bars[run_id] = self.backend.create_bar(
            desc=run_id, total=total or None, leave=self.config.leave
        )
        self._counts[run_id] = {}

    def on_node_end(self, node_id, operation, outputs, duration, ctx: CallbackContext) -> None:
        if self.config.enable:
            self._advance(ctx, operation.value if operation is not None else "done")

    def on_error(self, node_id, error, ctx: CallbackContext) -> None:
        if self.config.enable:
            self._advance(ctx, "failed")

    def on_node_skipped(self, node_id, reason, ctx: CallbackContext) -> None:
        if self.config.enable:
            self._advance(ctx, "skipped")

    def on_run_end(self, run_id: str, report, ctx: CallbackContext) -> None:
        bar = self._bars.pop(run_id, None)
        self._counts.pop(run_id, None)
        if bar is None:
            return
        mark = "✓" if report.succeeded else "✗"
        bar.set_description(f"{run_id} {mark} ({report.duration:.2f}s)")
        self.backend.close_bar(bar)
