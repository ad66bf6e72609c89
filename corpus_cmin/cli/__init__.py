"""corpus-cmin CLI Package.

Public API:
- SubcommandBase: Base class for commands
- MinimizeCommand: The corpus minimization command
- main: CLI entry point
"""

from corpus_cmin.cli.base import SubcommandBase
from corpus_cmin.cli.main import MinimizeCommand, main

__all__ = ["SubcommandBase", "MinimizeCommand", "main"]
