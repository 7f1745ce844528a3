"""Command-line entry point for editing Roblox places with an LLM."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Callable, Sequence

from placepatch import (
    ApplyReport,
    LLMProviderRegistry,
    PatchApplicationError,
    PatchDocument,
    PatchGenerator,
    PlacePatchError,
    PlacePatchSettings,
    apply_patch,
    load_place,
    parse_cli_options,
    parse_patch,
    save_place,
)
from placepatch.llm import LLMClient
from placepatch.llm_providers import register_builtin_providers

logger = logging.getLogger("placepatch.cli")

_EXIT_WORDS = frozenset({"exit", "quit"})


def load_context(path: Path) -> str:
    """Return the Markdown context stored at ``path``."""

    if path.suffix.lower() != ".md":
        raise ValueError(f"Context file must have a .md extension: '{path}'")
    return path.read_text(encoding="utf-8")


def apply_to_file(path: Path, patch: PatchDocument, *, dry_run: bool = False) -> ApplyReport:
    """Load the place at ``path``, apply ``patch`` and write the result back.

    Nothing is written when ``dry_run`` is set or when the patch fails part
    way through; the file on disk is left as it was.
    """

    graph = load_place(path)
    report = apply_patch(graph, patch)
    if dry_run:
        logger.info("Dry run: '%s' left unchanged", path)
    else:
        save_place(path, graph)
    return report


def _print_report(path: Path, report: ApplyReport, *, dry_run: bool) -> None:
    print(f"Applied patch: {report.summary()}")
    for warning in report.warnings:
        print(f"  warning: {warning}")
    if dry_run:
        print("Dry run: no changes were written.")
    else:
        print(f"Updated place file: {path}")


def run_prompt(
    path: Path,
    instruction: str,
    generator: PatchGenerator,
    *,
    context: str | None = None,
    dry_run: bool = False,
) -> ApplyReport:
    """Run one prompt against the place stored at ``path``."""

    graph = load_place(path)
    print(f"Processing prompt: {instruction}")
    patch = generator.generate(graph, instruction, context)
    logger.debug("Model patch: %s", patch.model_dump_json(by_alias=True))
    report = apply_patch(graph, patch)
    if not dry_run:
        save_place(path, graph)
    _print_report(path, report, dry_run=dry_run)
    return report


def run_interactive(
    path: Path,
    generator: PatchGenerator,
    *,
    context: str | None = None,
    dry_run: bool = False,
    input_fn: Callable[[str], str] | None = None,
) -> None:
    """Prompt repeatedly until the user types ``exit``/``quit`` or input ends.

    The place is re-read from disk every cycle so edits made elsewhere
    between prompts are picked up. Errors are reported and the loop carries
    on with the next prompt.
    """

    print("\n===== PLACEPATCH INTERACTIVE MODE =====")
    print("Enter prompts to modify your place. Type 'exit' or 'quit' to stop.")
    read_line = input_fn or input

    while True:
        try:
            raw = read_line("\nEnter your prompt: ")
        except EOFError:
            print()
            break

        instruction = raw.strip()
        if instruction.lower() in _EXIT_WORDS:
            break
        if not instruction:
            print("Prompt is empty, please try again")
            continue

        try:
            run_prompt(path, instruction, generator, context=context, dry_run=dry_run)
        except PatchApplicationError as exc:
            print(f"Error modifying place: {exc}")
            if exc.report is not None:
                print(f"  partial result (not saved): {exc.report.summary()}")
        except (PlacePatchError, OSError) as exc:
            print(f"Error: {exc}")

    print("Exiting interactive mode")


def build_llm_client(
    provider: str,
    option_strings: Sequence[str] | None,
    settings: PlacePatchSettings,
) -> LLMClient:
    """Create the LLM client named by ``provider``.

    Options derived from ``settings`` are applied first and overridden by
    any ``key=value`` pairs from the command line.
    """

    registry = LLMProviderRegistry()
    register_builtin_providers(registry)
    options = settings.provider_options(provider)
    if option_strings:
        options.update(parse_cli_options(option_strings))
    return registry.create(provider, **options)


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Apply LLM-generated edits to a Roblox place file"
    )
    parser.add_argument(
        "-f",
        "--file",
        dest="file",
        type=Path,
        required=True,
        help="Place file to edit (.rbxlx, .rbxmx or .json). Edited in place.",
    )
    parser.add_argument(
        "-p",
        "--prompt",
        type=str,
        help="Run a single instruction and exit instead of starting the prompt loop.",
    )
    parser.add_argument(
        "-c",
        "--context",
        type=Path,
        help="Markdown (.md) file whose contents are sent along with every prompt.",
    )
    parser.add_argument(
        "--patch",
        type=Path,
        help="Apply a JSON patch document from disk without contacting an LLM.",
    )
    parser.add_argument(
        "--llm-provider",
        type=str,
        help=(
            "LLM provider used to generate patches (default: PLACEPATCH_LLM_PROVIDER "
            "or 'gemini'). Accepts registered names or module paths (module:factory)."
        ),
    )
    parser.add_argument(
        "--llm-option",
        dest="llm_options",
        action="append",
        metavar="KEY=VALUE",
        help=(
            "Additional option to pass to the LLM provider factory. "
            "May be supplied multiple times."
        ),
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Apply the patch in memory and report the result without saving.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    """Edit a place from a patch file, a single prompt or an interactive loop."""

    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    place_path: Path = args.file.expanduser()
    print(f"Input filepath: {place_path}")
    try:
        load_place(place_path)
    except (PlacePatchError, OSError) as exc:
        print(f"Failed to load place from '{place_path}': {exc}")
        raise SystemExit(2) from exc
    print("Successfully parsed place file!")

    if args.patch is not None:
        if args.prompt is not None or args.llm_provider or args.llm_options:
            print(
                "--patch cannot be combined with --prompt, --llm-provider or "
                "--llm-option. Patch files are applied without an LLM."
            )
            raise SystemExit(2)
        try:
            patch = parse_patch(args.patch.read_text(encoding="utf-8"))
            report = apply_to_file(place_path, patch, dry_run=args.dry_run)
        except (PlacePatchError, OSError) as exc:
            print(f"Failed to apply patch '{args.patch}': {exc}")
            raise SystemExit(1) from exc
        _print_report(place_path, report, dry_run=args.dry_run)
        return

    context: str | None = None
    if args.context is not None:
        try:
            context = load_context(args.context)
        except (ValueError, OSError) as exc:
            print(f"Failed to load context: {exc}")
            raise SystemExit(2) from exc
        print(f"Loaded context from: {args.context}")

    try:
        settings = PlacePatchSettings.from_env()
    except ValueError as exc:
        print(f"Invalid configuration: {exc}")
        raise SystemExit(2) from exc

    provider = args.llm_provider or settings.llm_provider
    try:
        llm_client = build_llm_client(provider, args.llm_options, settings)
    except Exception as exc:
        print(f"Failed to initialise LLM provider '{provider}': {exc}")
        raise SystemExit(2) from exc

    generator = PatchGenerator(
        llm_client=llm_client,
        temperature=settings.temperature if settings.temperature is not None else 0.8,
    )

    if args.prompt is not None:
        instruction = args.prompt.strip()
        if not instruction:
            print("--prompt must not be empty.")
            raise SystemExit(2)
        try:
            run_prompt(
                place_path,
                instruction,
                generator,
                context=context,
                dry_run=args.dry_run,
            )
        except (PlacePatchError, OSError) as exc:
            print(f"Error modifying place: {exc}")
            raise SystemExit(1) from exc
        return

    run_interactive(place_path, generator, context=context, dry_run=args.dry_run)


if __name__ == "__main__":
    main()
