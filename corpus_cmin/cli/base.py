"""Base class for CLI commands.

Provides common patterns for argument parsing, error handling, and dispatch.
"""

from __future__ import annotations

import argparse
import traceback
from abc import ABC, abstractmethod

from corpus_cmin.core.exceptions import CminError

#: Conventional exit status after SIGINT
EXIT_INTERRUPTED = 130


class SubcommandBase(ABC):
    """Abstract base class for CLI commands.

    Example:
        class MyCommand(SubcommandBase):
            @property
            def name(self) -> str:
                return "my-cmd"

            @property
            def description(self) -> str:
                return "My custom command"

            def configure_parser(self, parser: argparse.ArgumentParser) -> None:
                parser.add_argument("--input", required=True)

            def run(self, args: argparse.Namespace) -> int:
                print(f"Processing: {args.input}")
                return 0

    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Program name shown in usage."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Short description for help text."""
        ...

    @property
    def epilog(self) -> str:
        """Optional epilog with examples. Override to add examples."""
        return ""

    @abstractmethod
    def configure_parser(self, parser: argparse.ArgumentParser) -> None:
        """Add arguments to the parser.

        Args:
            parser: The argument parser to configure.

        """
        ...

    @abstractmethod
    def run(self, args: argparse.Namespace) -> int:
        """Execute the command.

        Args:
            args: Parsed command-line arguments.

        Returns:
            Exit code: 0 for success, 1 for failure.

        """
        ...

    def create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser with standard formatting.

        Returns:
            Configured ArgumentParser instance.

        """
        parser = argparse.ArgumentParser(
            prog=self.name,
            description=self.description,
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog=self.epilog if self.epilog else None,
        )
        self.configure_parser(parser)
        return parser

    def main(self, argv: list[str] | None = None) -> int:
        """Standard entry point with error handling.

        Args:
            argv: Command-line arguments. If None, uses sys.argv[1:].

        Returns:
            Exit code: 0 for success, 1 for failure, 130 when interrupted.

        """
        parser = self.create_parser()
        args = parser.parse_args(argv)
        try:
            return self.run(args)
        except KeyboardInterrupt:
            print("\n[-] Interrupted, partial results discarded")
            return EXIT_INTERRUPTED
        except CminError as e:
            print(f"[-] Error: {e.message}")
            return 1
        except Exception as e:
            print(f"[-] Command failed: {e}")
            if getattr(args, "verbose", False):
                traceback.print_exc()
            return 1
