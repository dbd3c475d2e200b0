"""taskledger - local task and subtask store."""

__version__ = "0.1.0"
