"""
promptgrid - Prompt testing across inputs and models.

Version an instruction, run it on every test input with every model at once,
compare the answers.
"""

from promptgrid.runner import NoRunnableInputError, PromptRunner, RunOptions, RunResult
from promptgrid.store import TestMatrixStore

__version__ = "0.1.0"
__all__ = [
    "NoRunnableInputError",
    "PromptRunner",
    "RunOptions",
    "RunResult",
    "TestMatrixStore",
    "__version__",
]
