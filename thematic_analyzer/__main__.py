"""Thematic Analyzer - Command Line Interface.

This module provides a command-line interface for running theme extraction
over a corpus of sources stored as JSON or CSV.
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

from . import __version__
from .cache import corpus_fingerprint
from .config import ExtractionConfig, load_config
from .embeddings import EmbeddingProvider, HashingEmbeddingBackend, OpenAIEmbeddingBackend
from .exceptions import ThematicAnalysisError
from .pipeline import ThemeExtractionPipeline, fingerprint_params
from .refiner import OpenAICompletion
from .strategies import STRATEGIES
from .utils.file_io import load_sources, save_result, save_themes_csv

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, log_file: Optional[str] = 'thematic_analyzer.log') -> None:
    """Configure root logging for CLI runs."""
    level = "DEBUG" if verbose else os.getenv("LOG_LEVEL", "INFO").upper()
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


def parse_args(args: List[str]) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        args: Command line arguments

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        description='Thematic Analyzer - Extract themes from qualitative sources using embeddings'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Parent parser with common arguments
    parent_parser = argparse.ArgumentParser(add_help=False)
    parent_parser.add_argument('input', type=str, help='Input sources file (JSON or CSV)')
    parent_parser.add_argument('--config', '-c', type=str, default=None,
                               help='YAML configuration file')
    parent_parser.add_argument('--backend', choices=['local', 'openai'], default='local',
                               help='Embedding backend (default: local)')
    parent_parser.add_argument('--no-llm', action='store_true',
                               help='Label themes locally instead of calling the completion model')
    parent_parser.add_argument('--target-themes', type=int, default=None,
                               help='Target number of themes for clustering')
    parent_parser.add_argument('--strategy', action='append', choices=sorted(STRATEGIES), default=[],
                               help='Apply a research strategy to the final themes (repeatable)')

    extract_parser = subparsers.add_parser('extract', help='Extract themes from sources', parents=[parent_parser])
    extract_parser.add_argument('--output', '-o', type=str, default='themes.json',
                                help='Output JSON file (default: themes.json)')
    extract_parser.add_argument('--csv', type=str, default=None,
                                help='Also write a theme table to this CSV file')

    subparsers.add_parser('fingerprint', help='Print the corpus fingerprint used for result caching',
                          parents=[parent_parser])

    # If no arguments provided, show help
    if len(args) == 0:
        parser.print_help()
        sys.exit(0)

    return parser.parse_args(args)


def build_provider(backend: str, config: ExtractionConfig) -> EmbeddingProvider:
    if backend == 'openai':
        return EmbeddingProvider.from_config(OpenAIEmbeddingBackend(model=config.embedding_model), config)
    return EmbeddingProvider.from_config(HashingEmbeddingBackend(), config)


def extract_command(args: argparse.Namespace) -> None:
    """Handle the extract command.

    Args:
        args: Parsed command line arguments
    """
    config = load_config(args.config)
    logger.info(f"Loading sources from: {args.input}")
    records = load_sources(args.input)

    provider = build_provider(args.backend, config)
    complete = None if args.no_llm else OpenAICompletion(model=config.labeling_model)
    strategies = [STRATEGIES[name]() for name in args.strategy]

    pipeline = ThemeExtractionPipeline(provider, complete=complete, config=config, strategies=strategies)
    result = pipeline.run(records, target_themes=args.target_themes)

    save_result(result, args.output)
    logger.info(f"Saved {len(result.themes)} themes to {args.output}")
    if args.csv:
        save_themes_csv(result, args.csv)
        logger.info(f"Saved theme table to {args.csv}")

    print(f"\nExtracted {len(result.themes)} themes from {result.stats['sources']} sources")
    for theme in result.themes:
        print(f"  - {theme.label} ({theme.size} codes, coherence {theme.coherence:.2f})")
    if result.skipped:
        print(f"Skipped {len(result.skipped)} units (see {args.output})")


def fingerprint_command(args: argparse.Namespace) -> None:
    """Handle the fingerprint command."""
    config = load_config(args.config)
    sources = ThemeExtractionPipeline.prepare_sources(load_sources(args.input))
    model_id = config.embedding_model if args.backend == 'openai' else HashingEmbeddingBackend().model
    params = fingerprint_params(
        config,
        model_id,
        target_themes=args.target_themes,
        llm_labels=not args.no_llm,
        strategy_names=[STRATEGIES[name].name for name in args.strategy],
    )
    print(corpus_fingerprint(sources, params))


def main() -> None:
    """Main entry point for the Thematic Analyzer CLI."""
    # Load environment variables
    load_dotenv()

    args = parse_args(sys.argv[1:])
    setup_logging(verbose=args.verbose)

    try:
        if args.command == "extract":
            extract_command(args)
        elif args.command == "fingerprint":
            fingerprint_command(args)
        else:
            logger.error(f"Unknown command: {args.command}")
            sys.exit(1)
    except (ThematicAnalysisError, ValueError, OSError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
