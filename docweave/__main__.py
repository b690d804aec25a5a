import argparse
import asyncio
import logging
import sys

from .core.checkpoint import CheckpointStore, SessionManager
from .core.config import load_config
from .core.db import get_database_manager
from .core.errors import DocweaveError, PipelineTimeoutError
from .core.pipeline.phases import PipelinePhase
from .core.pipeline.runner import DocumentationPipeline


def setup_logging(log_level: str = "INFO") -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.ERROR)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("llama_index").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def _print_status(db, session_id: str) -> None:
    record = SessionManager(db).get_session(session_id)
    store = CheckpointStore(db)
    state = store.load_checkpoint_state(session_id)
    progress = store.analysis_progress(session_id)
    turn, history = store.load_refinement_state(session_id)

    nxt = PipelinePhase.from_number(state.resume_phase) if state.resume_phase else None
    print(f"\n  Session:   {record.id}")
    print(f"  Project:   {record.project_path}")
    print(f"  Status:    {record.status} (mode={record.analysis_mode})")
    print(f"  Phase:     {state.last_completed_phase}/6 complete"
          + (f", next: {nxt.display_name}" if nxt else ""))
    print(f"  Files:     {progress.analyzed}/{progress.total} analyzed, "
          f"{progress.failed} failed, {progress.remaining} remaining")
    print(f"  Agents:    {', '.join(sorted(state.completed_agents)) or 'none'}")
    if history:
        print(f"  Quality:   {history[-1].get('overall', 0.0):.2f} after {turn} refinement turns")
    if record.last_error:
        print(f"  Error:     {record.last_error}")
    print()


def main():
    """Main entry point for docweave."""
    parser = argparse.ArgumentParser(description="docweave - resumable repository documentation")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a .docweave.yml configuration file"
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Checkpoint database URL (overrides config and DOCWEAVE_DATABASE_URL)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    start = sub.add_parser("start", help="Start a new documentation session")
    start.add_argument("path", help="Project root to document")
    start.add_argument("--mode", choices=["fast", "standard", "deep"], default=None)

    for name, text in (
        ("resume", "Resume an interrupted session"),
        ("status", "Show session progress"),
        ("clear", "Delete a session and all its checkpoints"),
    ):
        cmd = sub.add_parser(name, help=text)
        cmd.add_argument("session_id")

    refine = sub.add_parser("refine", help="Run extra refinement rounds on a finished session")
    refine.add_argument("session_id")
    refine.add_argument("--rounds", type=int, default=1)

    args = parser.parse_args()
    setup_logging(args.log_level)

    try:
        config = load_config(
            args.config,
            database_url=args.database_url,
            mode=getattr(args, "mode", None),
        )
        db = get_database_manager(config.database_url)

        if args.command == "status":
            _print_status(db, args.session_id)
            return 0

        if args.command == "clear":
            SessionManager(db).clear_session(args.session_id)
            print(f"Cleared session {args.session_id}")
            return 0

        pipeline = DocumentationPipeline(db, config)
        if args.command == "start":
            session_id = pipeline.start(args.path)
            print(f"Session: {session_id}")
            asyncio.run(pipeline.run_with_recovery(session_id))
            _print_status(db, session_id)
        elif args.command == "resume":
            asyncio.run(pipeline.run_with_recovery(args.session_id))
            _print_status(db, args.session_id)
        elif args.command == "refine":
            score = asyncio.run(pipeline.refine(args.session_id, args.rounds))
            if score is not None:
                print(f"Quality score: {score.overall:.2f} ({len(score.gaps)} gaps)")
        return 0
    except PipelineTimeoutError as e:
        logger.warning(str(e))
        return 2
    except DocweaveError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
