"""Replay: graph traversal, retries, run logging and the run manager."""

from replaykit.replay.after_scripts import AfterScriptQueue
from replaykit.replay.flow_runner import FlowRunner, main_path
from replaykit.replay.manager import ReplayManager
from replaykit.replay.retry import Backoff, RetryPolicy, with_retry
from replaykit.replay.run_logger import RunLogger
from replaykit.replay.runner import ReplayRunner, new_run_id

__all__ = [
    "AfterScriptQueue",
    "Backoff",
    "FlowRunner",
    "ReplayManager",
    "ReplayRunner",
    "RetryPolicy",
    "RunLogger",
    "main_path",
    "new_run_id",
    "with_retry",
]
