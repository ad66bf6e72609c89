"""corpus-cmin - Command Line Interface

Traces every input of a corpus with afl-showmap and writes the smallest subset
that keeps every coverage tuple to a fresh output directory.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from tqdm import tqdm

from corpus_cmin.cli.base import SubcommandBase
from corpus_cmin.core.config import get_settings
from corpus_cmin.core.constants import LinkMode
from corpus_cmin.core.corpus.corpus_minimization import (
    MinimizationReport,
    minimize_corpus,
)
from corpus_cmin.core.corpus.materializer import default_output_dir
from corpus_cmin.core.corpus.trace_store import (
    InputFile,
    load_traces,
    save_traces,
    scan_corpus,
)
from corpus_cmin.core.tracer import ShowmapTracer, locate_showmap, validate_target
from corpus_cmin.utils.logger import configure_logging


class MinimizeCommand(SubcommandBase):
    """Minimize a fuzzing corpus by coverage."""

    @property
    def name(self) -> str:
        return "corpus-cmin"

    @property
    def description(self) -> str:
        return "Corpus minimization for AFL-style coverage-guided fuzzers"

    @property
    def epilog(self) -> str:
        return """
Examples:
  # Minimize a corpus; the target reads its input on stdin
  corpus-cmin ./corpus ./target

  # Target takes the input path as an argument
  corpus-cmin -j 8 ./findings ./target --parse @@

  # Edge coverage only, written to ./corpus.edges.minimized
  corpus-cmin -e ./corpus ./target

  # Keep traces, then re-minimize later without running the target
  corpus-cmin --save-traces traces.json ./corpus ./target
  corpus-cmin --load-traces traces.json -o ./small ./corpus

Set AFL_PATH if afl-showmap is not on PATH.
"""

    def configure_parser(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "corpus_dir",
            metavar="CORPUS_DIR",
            help="Corpus directory (an afl-fuzz output dir's queue/ is used if present)",
        )
        parser.add_argument(
            "target",
            nargs="?",
            metavar="TARGET",
            help="Instrumented target binary",
        )
        parser.add_argument(
            "target_args",
            nargs=argparse.REMAINDER,
            metavar="ARGS",
            help="Target arguments; @@ is replaced by the input path",
        )

        tracer_group = parser.add_argument_group("tracer options")
        tracer_group.add_argument(
            "-e",
            "--edges-only",
            action="store_true",
            default=None,
            help="Trace edge coverage only, ignoring hit counts",
        )
        tracer_group.add_argument(
            "-m",
            "--mem-limit",
            type=int,
            metavar="MB",
            help="Target memory limit in MB, 0 for none (default: 100)",
        )
        tracer_group.add_argument(
            "-t",
            "--timeout",
            type=float,
            metavar="SEC",
            help="Per-input timeout in seconds (default: 5)",
        )
        tracer_group.add_argument(
            "-j",
            "--workers",
            type=int,
            metavar="N",
            help="Concurrent tracer invocations (default: CPU count)",
        )
        tracer_group.add_argument(
            "--load-traces",
            metavar="FILE",
            help="Read traces from a JSON cache instead of running the target",
        )
        tracer_group.add_argument(
            "--save-traces",
            metavar="FILE",
            help="Write the collected traces to a JSON cache",
        )

        output_group = parser.add_argument_group("output options")
        output_group.add_argument(
            "-o",
            "--output",
            metavar="DIR",
            help="Output directory (default: CORPUS_DIR.minimized)",
        )
        output_group.add_argument(
            "--link-mode",
            choices=[mode.value for mode in LinkMode],
            help="How selected files are placed in the output (default: hardlink)",
        )
        output_group.add_argument(
            "--format",
            choices=["json", "text"],
            default="text",
            help="Summary format (default: text)",
        )
        output_group.add_argument(
            "--log-format",
            choices=["json", "console"],
            help="Log format (default: console)",
        )
        output_group.add_argument(
            "-v",
            "--verbose",
            action="store_true",
            help="Verbose output",
        )

    def run(self, args: argparse.Namespace) -> int:
        settings = get_settings()
        log_level = "DEBUG" if args.verbose else settings.logging.log_level.value
        log_format = args.log_format or settings.logging.log_format
        configure_logging(log_level=log_level, json_format=log_format == "json")

        corpus_dir = Path(args.corpus_dir)
        edges_only = bool(args.edges_only or settings.tracer.edges_only)
        output_dir = (
            Path(args.output)
            if args.output
            else default_output_dir(corpus_dir, edges_only)
        )
        workers = args.workers or settings.minimization.workers
        link_mode = (
            LinkMode(args.link_mode) if args.link_mode else settings.minimization.link_mode
        )

        tracer: ShowmapTracer | None = None
        if args.load_traces:
            trace_of = load_traces(Path(args.load_traces))
        else:
            if not args.target:
                print("[-] TARGET is required unless --load-traces is given")
                return 1
            target = validate_target(args.target)
            tracer = ShowmapTracer(
                locate_showmap(settings.tracer.afl_path),
                target,
                args.target_args,
                timeout=args.timeout or settings.tracer.timeout,
                memory_limit_mb=(
                    args.mem_limit
                    if args.mem_limit is not None
                    else settings.tracer.memory_limit_mb
                ),
                edges_only=edges_only,
                kill_grace=settings.tracer.kill_grace,
            )
            trace_of = tracer

        text = args.format == "text"
        corpus_root, files = scan_corpus(corpus_dir)
        if text:
            print("corpus minimization tool for AFL-style fuzzers\n")
            if args.verbose:
                print(settings.get_summary())
            if files:
                print(f"[*] Obtaining traces for input files in '{corpus_root}'...")

        with tqdm(
            total=len(files),
            unit="file",
            ncols=70,
            disable=not text or not files,
            file=sys.stderr,
        ) as pbar:

            def on_traced(_: InputFile) -> None:
                pbar.update(1)

            report = minimize_corpus(
                corpus_dir,
                output_dir,
                trace_of,
                max_workers=workers,
                link_mode=link_mode,
                on_traced=on_traced,
                on_cancel=tracer.cancel if tracer is not None else None,
            )

        if args.save_traces and report.store is not None:
            save_traces(report.store, Path(args.save_traces))

        if text:
            print_summary(report)
        else:
            print(json.dumps(report.to_dict(), indent=2))
        return 0


def print_summary(report: MinimizationReport) -> None:
    """Print the human-readable run summary."""
    result = report.result
    print(
        f"[+] Found {len(result.universe)} unique tuples across "
        f"{result.corpus_size} files."
    )
    if report.nothing_to_do:
        print(f"[*] {report.summary_line()}")
        return

    if report.failed_traces:
        print(f"[!] {len(report.failed_traces)} inputs could not be traced")
    if not result.is_complete:
        missing = len(result.universe - result.covered)
        print(f"[!] Selection misses {missing} tuples")
    print(f"[+] {report.summary_line()}")


def main(argv: list[str] | None = None) -> int:
    """Main entry point for corpus-cmin."""
    return MinimizeCommand().main(argv)


if __name__ == "__main__":
    sys.exit(main())
