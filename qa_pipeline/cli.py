"""
Command Line Interface for the agentic QA pipeline

Provides the ``qa-pipeline`` entry point:
- Reads requirements (inline or from a file) plus optional reference files
- Runs either the agentic plan → draft → review pipeline or a single-shot call
- Writes the response JSON to stdout or a file
- Exits non-zero with a machine-readable error on stderr when a run fails
"""

from __future__ import annotations
import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional
import logging

from pydantic import ValidationError

from .config import merged_settings
from .events import LoggingObserver, StreamObserver
from .exceptions import ConfigurationError, PlannerFailure, QAPipelineError, RequestValidationError
from .models import AgenticOptions, GenerationRequest, GenerationResponse, HighLevelCase, UploadedFile
from .runtime import PROVIDERS, ProviderRegistry
from .workflow import PipelineOrchestrator

PROVIDER_CHOICES = list(PROVIDERS)


def setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    # Configure root logger
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Reduce noise from some libraries
    logging.getLogger('openai').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('requests').setLevel(logging.WARNING)


def create_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""

    parser = argparse.ArgumentParser(
        prog="qa-pipeline",
        description="Agentic QA pipeline - plan, draft and review test cases with an LLM",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Single-shot generation of detailed cases
  qa-pipeline --requirements-file prd.md --mode detailed

  # Agentic run with two review passes and four concurrent writers
  qa-pipeline --requirements-file prd.md --mode detailed --agentic \\
    --max-review-passes 2 --writer-concurrency 4 --output cases.json

  # Plan with one provider, draft with a local mlx-llm-server
  qa-pipeline --requirements "Users can reset passwords by email" --mode high-level \\
    --agentic --planner-provider openai --writer-provider local

  # Show which providers are configured
  qa-pipeline --list-providers
        """
    )

    # Input specification
    input_group = parser.add_argument_group('input specification')
    input_group.add_argument(
        '--requirements-file',
        type=Path,
        help='Path to a requirements/PRD text file'
    )
    input_group.add_argument(
        '--requirements',
        help='Inline requirements text (alternative to --requirements-file)'
    )
    input_group.add_argument(
        '--file',
        type=Path,
        action='append',
        default=[],
        dest='files',
        help='Reference document whose text is included as a preview (repeatable)'
    )
    input_group.add_argument(
        '--scenarios-file',
        type=Path,
        help='JSON array of previously generated high-level scenarios to expand'
    )

    # Generation options
    gen_group = parser.add_argument_group('generation options')
    gen_group.add_argument(
        '--mode',
        choices=['high-level', 'detailed'],
        default='detailed',
        help='Generate high-level scenarios or detailed cases (default: detailed)'
    )
    gen_group.add_argument(
        '--priority-mode',
        choices=['comprehensive', 'core-functionality'],
        default='comprehensive',
        help='Coverage priority (default: comprehensive)'
    )

    # LLM provider options
    provider_group = parser.add_argument_group('LLM provider options')
    provider_group.add_argument('--provider', choices=PROVIDER_CHOICES, help='Default provider for all stages')
    provider_group.add_argument('--model', help='Default model (also the writer model)')
    for stage in ('planner', 'writer', 'reviewer'):
        provider_group.add_argument(
            f'--{stage}-provider', choices=PROVIDER_CHOICES, help=f'Provider for the {stage} stage'
        )
        provider_group.add_argument(f'--{stage}-model', help=f'Model for the {stage} stage')
    provider_group.add_argument(
        '--list-providers',
        action='store_true',
        help='List known providers and whether they are configured, then exit'
    )
    provider_group.add_argument(
        '--check',
        action='store_true',
        help='With --list-providers, also check that configured providers are reachable'
    )

    # Agentic options
    agentic_group = parser.add_argument_group('agentic options')
    agentic_group.add_argument(
        '--agentic',
        action='store_true',
        help='Run the plan → draft → review pipeline instead of a single call'
    )
    agentic_group.add_argument(
        '--max-review-passes',
        type=int,
        help='Maximum review passes; 0 disables review'
    )
    agentic_group.add_argument(
        '--writer-concurrency',
        type=int,
        help='Number of plan items drafted concurrently'
    )
    agentic_group.add_argument(
        '--stream-progress',
        action='store_true',
        help='Write progress events to stderr as JSON lines'
    )

    # Output options
    output_group = parser.add_argument_group('output options')
    output_group.add_argument(
        '--output',
        '-o',
        type=Path,
        help='Write the response JSON to this file (default: stdout)'
    )
    output_group.add_argument(
        '--verbose',
        '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    return parser


def validate_inputs(args: argparse.Namespace) -> None:
    """Validate command line inputs."""

    if args.requirements_file and args.requirements:
        raise ValueError("Provide either --requirements-file or --requirements, not both")

    if not (args.requirements_file or args.requirements or args.files or args.scenarios_file):
        raise ValueError("Either --requirements-file, --requirements, --file or --scenarios-file is required")

    # Validate file paths exist
    for path in [args.requirements_file, args.scenarios_file, *args.files]:
        if path and not path.exists():
            raise FileNotFoundError(f"Input file not found: {path}")

    if args.max_review_passes is not None and args.max_review_passes < 0:
        raise ValueError("--max-review-passes must be 0 or more")

    if args.writer_concurrency is not None and args.writer_concurrency < 1:
        raise ValueError("--writer-concurrency must be at least 1")


def load_uploaded_file(path: Path) -> UploadedFile:
    """Read a pre-extracted text file as an uploaded file preview."""
    return UploadedFile(
        name=path.name,
        type=path.suffix.lstrip('.') or 'text',
        size_bytes=path.stat().st_size,
        preview_text=path.read_text(encoding='utf-8', errors='replace'),
    )


def load_scenarios(path: Path) -> List[HighLevelCase]:
    with path.open('r', encoding='utf-8') as f:
        data = json.load(f)

    if isinstance(data, dict) and "testCases" in data:
        data = data["testCases"]
    if not isinstance(data, list):
        raise ValueError("Scenarios file must hold a JSON array or an object with 'testCases'")

    return [HighLevelCase.model_validate(item) for item in data]


def build_request(args: argparse.Namespace) -> GenerationRequest:
    """Create a GenerationRequest from command line arguments."""

    if args.requirements_file:
        requirements = args.requirements_file.read_text(encoding='utf-8')
    else:
        requirements = args.requirements or ""

    agentic_options = None
    if args.agentic:
        agentic_options = AgenticOptions(
            enable_agentic=True,
            planner_provider=args.planner_provider,
            planner_model=args.planner_model,
            writer_provider=args.writer_provider,
            writer_model=args.writer_model,
            reviewer_provider=args.reviewer_provider,
            reviewer_model=args.reviewer_model,
            max_review_passes=args.max_review_passes,
            writer_concurrency=args.writer_concurrency,
            stream_progress=args.stream_progress,
        )

    return GenerationRequest(
        requirements=requirements,
        files=[load_uploaded_file(path) for path in args.files],
        selected_scenarios=load_scenarios(args.scenarios_file) if args.scenarios_file else [],
        mode=args.mode,
        priority_mode=args.priority_mode,
        provider=args.provider,
        model=args.model,
        agentic_options=agentic_options,
    )


def write_response(response: GenerationResponse, output: Optional[Path]) -> None:
    payload = json.dumps(response.to_wire(), indent=2)
    if output is None:
        print(payload)
        return

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(payload + "\n", encoding='utf-8')
    print_success_summary(response, output)


def print_success_summary(response: GenerationResponse, output: Path) -> None:
    """Print brief success summary to stdout."""

    print(f"✅ Generated {len(response.test_cases)} test cases")
    if response.plan is not None:
        print(f"  Plan items: {len(response.plan)}")
        print(f"  Review passes: {response.passes_executed or 0}")
        print(f"  Feedback items: {len(response.review_feedback or [])}")
    if response.warnings:
        print(f"  Warnings: {len(response.warnings)}")
        for warning in response.warnings:
            print(f"    - {warning}")
    print(f"📁 Output: {output}")


def print_error_summary(error: Exception) -> None:
    """Print machine-readable error summary to stderr."""

    error_report = {
        "error_type": type(error).__name__,
        "message": str(error),
    }
    cause = getattr(error, 'cause', None)
    if cause is not None:
        error_report["cause"] = {"error_type": type(cause).__name__, "message": str(cause)}

    print(json.dumps(error_report, indent=2), file=sys.stderr)


def print_response_error(response: GenerationResponse) -> None:
    """Report a response-level generation error (single-shot) on stderr."""
    error_report = {"error_type": "GENERATION_FAILURE", "message": response.error}
    if response.debug is not None:
        error_report["debug"] = response.debug.model_dump(by_alias=True, exclude_none=True)
    print(json.dumps(error_report, indent=2), file=sys.stderr)


def list_providers(check: bool) -> int:
    registry = ProviderRegistry()
    print(json.dumps(registry.list_providers(check_reachable=check), indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""

    parser = create_parser()
    args = parser.parse_args(argv)

    # Setup logging
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    if args.list_providers:
        return list_providers(args.check)

    try:
        # Validate inputs
        validate_inputs(args)

        # Build request
        request = build_request(args)

        # Create and execute pipeline
        if args.stream_progress:
            observer = StreamObserver(sys.stderr)
        elif args.verbose:
            observer = LoggingObserver()
        else:
            observer = None
        orchestrator = PipelineOrchestrator(settings=merged_settings(), observer=observer)
        response = asyncio.run(orchestrator.run(request))

        write_response(response, args.output)

        if response.error:
            print_response_error(response)
            return 1

        return 0

    except PlannerFailure as e:
        logger.error(f"Planner failed: {e.cause}")
        print_error_summary(e)
        return 1

    except (ConfigurationError, RequestValidationError, ValidationError, ValueError, FileNotFoundError) as e:
        logger.error(f"Input validation failed: {e}")
        print_error_summary(e)
        return 2

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130  # Standard Unix exit code for SIGINT

    except QAPipelineError as e:
        logger.error(f"Pipeline failed: {e}")
        print_error_summary(e)
        return 3

    except Exception as e:
        logger.exception("Unexpected error occurred")
        print_error_summary(e)
        return 3


if __name__ == '__main__':
    sys.exit(main())
