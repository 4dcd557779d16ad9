"""Stepwise: deferred multi-step plan execution for conversational agents.

An agent defines an ordered list of steps separated by delays. Each step is
executed asynchronously on a queue trigger, with durable history and no
process staying resident between steps.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
