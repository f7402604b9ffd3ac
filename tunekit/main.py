"""
CLI entry point for tunekit.
Provides commands: run, space
"""
import argparse
import json
import logging
import signal
import sys

from tunekit.config import load_settings
from tunekit.db.db import get_session, init_db, save_experiment
from tunekit.exceptions import TunekitError
from tunekit.experiment import Experiment
from tunekit.search.base import AlgorithmKind
from tunekit.target.command import load_target

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, log_file: str = 'tunekit.log', log_level: str = 'INFO'):
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )


def parse_start(value: str) -> dict:
    """Parse the --start option (inline JSON or a path to a JSON file)."""
    try:
        start = json.loads(value)
    except json.JSONDecodeError:
        try:
            with open(value, 'r') as f:
                start = json.load(f)
        except FileNotFoundError:
            logger.error(f"--start is neither JSON nor an existing file: {value}")
            sys.exit(1)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in {value}: {e}")
            sys.exit(1)
    if not isinstance(start, dict):
        logger.error(f"--start must be a JSON object mapping parameter names to values, got: {value}")
        sys.exit(1)
    return start


def settings_from_args(args):
    """Merge CLI flags over environment settings."""
    return load_settings(
        target_dirs=args.target_dir or None,
        objectives_dir=getattr(args, 'objectives', None),
        sweep_cutoff=args.cutoff,
        tabu_tenure=getattr(args, 'tenure', None),
        max_iterations=getattr(args, 'max_iterations', None),
        stall_limit='none' if getattr(args, 'no_stall_limit', False) else getattr(args, 'stall_limit', None),
        seed=getattr(args, 'seed', None),
        threads=getattr(args, 'threads', None),
        objective_mode=getattr(args, 'mode', None),
        maximize=False if getattr(args, 'minimize', False) else None,
        work_dir=getattr(args, 'work_dir', None),
        retain_intermediates=True if getattr(args, 'keep', False) else None,
    )


def cmd_space(args, settings):
    """Describe a target's parameter space."""
    target = load_target(args.target, settings.target_dirs)
    space = target.parameter_space
    size = space.size()
    kind = AlgorithmKind.EXHAUSTIVE_SWEEP if size < settings.sweep_cutoff else AlgorithmKind.TABU_SEARCH

    logger.info(f"Target: {target.name}")
    for name, values in space.ranges.items():
        logger.info(f"  {name}: {len(values)} values {list(values)}")
    logger.info(f"Space size: {size} (cutoff {settings.sweep_cutoff}) -> {kind.value}")
    return {"target": target.name, "size": size, "algorithm": kind.value}


def cmd_run(args, settings):
    """Run an optimisation experiment."""
    start = parse_start(args.start) if args.start else None

    experiment = Experiment.from_settings(args.target, settings, start=start)

    # First Ctrl+C finishes the current iteration; a second one aborts
    def request_stop(signum, frame):
        logger.warning("Interrupt received; stopping after the current iteration.")
        experiment.stop()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    previous = signal.signal(signal.SIGINT, request_stop)
    try:
        result = experiment.run()
    finally:
        signal.signal(signal.SIGINT, previous)

    logger.info(f"Algorithm: {result.algorithm.value}, iterations: {result.iterations}, failures: {result.failures}")
    logger.info(f"Best score: {result.best_score:.4f}")
    logger.info("Best parameters:")
    for key, value in result.best_params.items():
        logger.info(f"  {key}: {value}")

    top = result.top_n(5)
    if not top.empty:
        logger.info("Top 5 parameter sets:")
        for i, (_, trial) in enumerate(top.iterrows(), 1):
            logger.info(f"{i}. score={trial['fitness']:.4f}, params={trial['params']}")

    run_id = None
    if args.save:
        engine = init_db(settings.database_url)
        with get_session(engine) as session:
            run_id = save_experiment(
                session,
                target=experiment.target.name,
                parameter_space=experiment.space.ranges,
                result=result,
                settings=settings.model_dump(mode='json'),
            )
        logger.info(f"Experiment saved. Run ID: {run_id}")

    if args.output:
        with open(args.output, 'w') as f:
            json.dump({
                "run_id": run_id,
                "best_params": result.best_params,
                "best_score": result.best_score,
                "iterations": result.iterations,
                "stopped": result.stopped,
            }, f, indent=2)

    return result


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description='tunekit - black-box parameter optimization for command-line tools',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Shared target options
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--target', required=True, help='Target name or path to its YAML definition')
    common.add_argument('--target-dir', action='append', help='Directory to search for targets (repeatable)')
    common.add_argument('--cutoff', type=int, help='Largest space size searched exhaustively')

    # Run command
    run_parser = subparsers.add_parser('run', parents=[common], help='Run an optimisation experiment')
    run_parser.add_argument('--objectives', help='Objective plugin directory')
    run_parser.add_argument('--tenure', type=int, help='Tabu tenure (moves)')
    run_parser.add_argument('--max-iterations', type=int, help='Tabu search evaluation budget')
    run_parser.add_argument('--stall-limit', type=int, help='Stop after this many evaluations without improvement')
    run_parser.add_argument('--no-stall-limit', action='store_true', help='Disable the stall stop')
    run_parser.add_argument('--seed', type=int, help='Random seed')
    run_parser.add_argument('--threads', type=int, help='Threads hinted to objectives')
    run_parser.add_argument('--start', help='Starting point as JSON or path to a JSON file')
    run_parser.add_argument('--mode', choices=['single', 'reduced'], help='Objective scalarization')
    run_parser.add_argument('--minimize', action='store_true', help='Lower objective results are better')
    run_parser.add_argument('--work-dir', help='Parent directory for run working directories')
    run_parser.add_argument('--keep', action='store_true', help='Keep per-run working directories')
    run_parser.add_argument('--save', action='store_true', help='Persist the run to the database')
    run_parser.add_argument('--output', help='Write the best result to this JSON file')

    # Space command
    subparsers.add_parser('space', parents=[common], help='Describe a target parameter space')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        settings = settings_from_args(args)
        setup_logging(args.verbose, settings.log_file, settings.log_level)

        if args.command == 'run':
            cmd_run(args, settings)
        elif args.command == 'space':
            cmd_space(args, settings)
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user.")
        sys.exit(0)
    except TunekitError as e:
        logger.error(f"Error executing {args.command}: {e}")
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Error executing {args.command}: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
