"""Build orchestration module.

This module handles:
- Scheduling recipe targets in dependency order
- The checkout session state machine
- Executing expand/run/install work inside a working copy
"""

from imagestack.builds.executor import ChrootExecutor, StepExecutor
from imagestack.builds.scheduler import BuildScheduler, plan_build, run_build
from imagestack.builds.session import CheckoutSession

__all__ = [
    "BuildScheduler",
    "CheckoutSession",
    "ChrootExecutor",
    "StepExecutor",
    "plan_build",
    "run_build",
]
