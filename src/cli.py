#!/usr/bin/env python3
"""CLI entry point for the virtual garden driver.

Verbs:
- reconcile: Create or update the virtual garden described by the imports
- delete: Remove the virtual garden from the hosting cluster
- validate: Check the imports without touching the cluster

Inputs fall back to the environment when flags are omitted:
OPERATION (verb), IMPORTS_PATH, EXPORTS_PATH.
"""

import argparse
import dataclasses
import json
import logging
import os
import signal
import sys
import threading
import time
from pathlib import Path

from api import Exports, load_imports, write_exports
from config import ConfigError, load_driver_config
from errors import DriverError, GraphExecutionError
from garden.operation import Operation
from readiness import is_inline_kubeconfig, validate_hosting_cluster, validate_kubeconfig
from store.kube import KubernetesStore
from validation import ensure_valid

VERBS = {
    'reconcile': 'Create or update the virtual garden',
    'delete': 'Delete the virtual garden',
    'validate': 'Validate the imports file only',
}

ENV_OPERATION = 'OPERATION'
ENV_IMPORTS_PATH = 'IMPORTS_PATH'
ENV_EXPORTS_PATH = 'EXPORTS_PATH'

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='virtual-garden',
        description='Deploys etcd and kube-apiserver of a virtual garden into a hosting cluster',
    )
    parser.add_argument(
        'verb',
        nargs='?',
        choices=list(VERBS),
        help=f'Operation to run (default: ${ENV_OPERATION})',
    )
    parser.add_argument(
        '--imports', '-i',
        type=Path,
        help=f'Imports YAML file (default: ${ENV_IMPORTS_PATH})',
    )
    parser.add_argument(
        '--exports', '-e',
        type=Path,
        help=f'Write exports YAML here after reconcile (default: ${ENV_EXPORTS_PATH})',
    )
    parser.add_argument(
        '--settings',
        type=Path,
        help='Driver settings YAML (workers, poll intervals, retries)',
    )
    parser.add_argument(
        '--kubeconfig',
        help='Hosting cluster kubeconfig, overrides hostingCluster.kubeconfig',
    )
    parser.add_argument(
        '--workers',
        type=int,
        help='Maximum number of tasks running at once',
    )
    parser.add_argument(
        '--skip-preflight',
        action='store_true',
        help='Skip the hosting cluster reachability check',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable debug logging',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )
    return parser


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _install_signal_handlers(cancel: threading.Event) -> None:
    """SIGINT/SIGTERM stop scheduling new tasks; running tasks see the event."""
    def handler(signum, _frame):
        logger.warning(f"Received signal {signum}, cancelling")
        cancel.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def _emit_json(verb: str, success: bool, duration: float, state=None,
               exports: Exports = None, error: str = None) -> None:
    """Emit structured JSON output."""
    output = {
        'verb': verb,
        'success': success,
        'duration_seconds': round(duration, 2),
    }
    if state is not None:
        output['graph'] = state.to_dict()
    if exports is not None:
        output['exports'] = exports.to_dict()
    if error:
        output['error'] = error
    print(json.dumps(output, indent=2, default=str))


def _print_errors(title: str, errors: list[str]) -> None:
    print(f"\n{title}:", file=sys.stderr)
    for error in errors:
        for i, line in enumerate(error.split('\n')):
            prefix = "  ✗ " if i == 0 else "    "
            print(f"{prefix}{line}", file=sys.stderr)


def _connect(kubeconfig: str, skip_preflight: bool) -> KubernetesStore:
    """Open the hosting cluster store and run the reachability check.

    Raises:
        DriverError: If the kubeconfig is unusable or the cluster is unreachable
    """
    ok, message = validate_kubeconfig(kubeconfig)
    if not ok:
        raise DriverError(message)
    logger.debug(message)

    if is_inline_kubeconfig(kubeconfig):
        store = KubernetesStore.from_kubeconfig(inline=kubeconfig)
    else:
        store = KubernetesStore.from_kubeconfig(path=Path(kubeconfig).expanduser())

    if not skip_preflight:
        ok, message = validate_hosting_cluster(store)
        if not ok:
            raise DriverError(f"{message}\nUse --skip-preflight to bypass this check")
        logger.info(message)
    return store


def run(argv: list) -> int:
    """Parse arguments and run one verb.

    Returns:
        Exit code
    """
    args = _parser().parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    verb = args.verb or os.environ.get(ENV_OPERATION, '').strip().lower()
    if verb not in VERBS:
        print(f"Error: unknown or missing operation '{verb}'. Choose one of: {', '.join(VERBS)}",
              file=sys.stderr)
        return 1

    imports_path = args.imports or os.environ.get(ENV_IMPORTS_PATH)
    if not imports_path:
        print(f"Error: specify the imports file with --imports or ${ENV_IMPORTS_PATH}", file=sys.stderr)
        return 1
    exports_path = args.exports or os.environ.get(ENV_EXPORTS_PATH)

    start = time.time()
    operation = None
    try:
        config = load_driver_config(args.settings)
        if args.workers is not None:
            config = dataclasses.replace(config, max_workers=args.workers)

        imports = load_imports(Path(imports_path))
        if args.kubeconfig:
            imports.hosting_cluster = dataclasses.replace(imports.hosting_cluster, kubeconfig=args.kubeconfig)
        ensure_valid(imports, require_kubeconfig=verb != 'validate')

        if verb == 'validate':
            logger.info(f"Imports {imports_path} are valid")
            if args.json_output:
                _emit_json(verb, True, time.time() - start)
            return 0

        store = _connect(imports.hosting_cluster.kubeconfig, args.skip_preflight)
        cancel = threading.Event()
        _install_signal_handlers(cancel)
        operation = Operation.build(store, imports, config)

        exports = None
        if verb == 'reconcile':
            exports = operation.reconcile(cancel)
            if exports_path:
                write_exports(exports, Path(exports_path))
                logger.info(f"Wrote exports to {exports_path}")
        else:
            operation.delete(cancel)

        logger.info(f"Operation '{verb}' completed in {time.time() - start:.1f}s")
        if args.json_output:
            _emit_json(verb, True, time.time() - start, operation.last_state, exports)
        return 0

    except ConfigError as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        return 1
    except GraphExecutionError as e:
        logger.error(f"Operation '{verb}' failed in task '{e.task_id}': {e.cause}")
        print(e.summary, file=sys.stderr)
        if args.json_output:
            _emit_json(verb, False, time.time() - start, operation.last_state if operation else None,
                       error=str(e))
        return 1
    except DriverError as e:
        errors = getattr(e, 'errors', None) or [str(e)]
        _print_errors(f"Operation '{verb}' failed", errors)
        if args.json_output:
            _emit_json(verb, False, time.time() - start,
                       operation.last_state if operation else None, error=str(e))
        return 1


def main():
    """CLI entry point."""
    return run(sys.argv[1:])


if __name__ == '__main__':
    sys.exit(main())
