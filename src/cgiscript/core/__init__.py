"""
Template execution.

    executor.py   SandboxedExecutor, ExecutionMode and the binding tables
    timers.py     TimerQueue behind set_timeout / set_interval
"""

from .executor import (
    AMBIENT_FACILITIES,
    PROFILES,
    SAFE_BUILTINS,
    ExecutionMode,
    ExecutionProfile,
    OutputBuffer,
    SandboxedExecutor,
    ScriptExecutionError,
    request_bindings,
)
from .timers import TimerQueue

__all__ = [
    "AMBIENT_FACILITIES",
    "PROFILES",
    "SAFE_BUILTINS",
    "ExecutionMode",
    "ExecutionProfile",
    "OutputBuffer",
    "SandboxedExecutor",
    "ScriptExecutionError",
    "TimerQueue",
    "request_bindings",
]
