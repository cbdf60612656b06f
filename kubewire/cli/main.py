"""kubewire CLI - Command-line interface for the tutorial manifests.

This module provides the main CLI entrypoint: validating the manifests'
cross-references, resolving a workload's environment, simulating the apply
sequence, and running the kubectl apply/status/delete workflow.
"""

import argparse
import json
import logging
import sys

from kubewire.core.errors import KubewireError, ReferenceResolutionError
from kubewire.k8s.artifact import ManifestSet
from kubewire.k8s.cluster import simulate
from kubewire.k8s.constants import DEFAULT_WEB_SERVICE
from kubewire.k8s.examples import tutorial_manifests
from kubewire.k8s.kubectl import Kubectl, apply_manifests, delete_manifests, service_url, status
from kubewire.k8s.model import ManifestObjects
from kubewire.k8s.oracle_config import CONFIGS, get_oracle_config
from kubewire.k8s.oracles import run_oracles
from kubewire.k8s.resolver import resolve_environment, secret_variable_names

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kubewire",
        description="kubewire - MongoDB + web application manifests for Minikube",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check the packaged manifests' cross-references
  kubewire validate

  # Check your own copies, including the OpenAPI schema
  kubewire validate manifests/ --oracles full

  # Show what the web application will see in its environment
  kubewire resolve webapp-deployment

  # What happens when the Secret is missing
  kubewire simulate --skip Secret/mongo-secret

  # Deploy to the current kubectl context, in the documented order
  kubewire export --out manifests/
  kubewire apply --dir manifests/
  kubewire status
  kubewire url
"""
    )

    verbose = argparse.ArgumentParser(add_help=False)
    verbose.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    validate_parser = subparsers.add_parser(
        "validate",
        parents=[verbose],
        help="Check manifest cross-references"
    )
    validate_parser.add_argument(
        "paths",
        nargs="*",
        help="Manifest files or directories (default: packaged tutorial manifests)"
    )
    validate_parser.add_argument(
        "--oracles",
        choices=sorted(CONFIGS),
        default="wiring",
        help="Oracle set to run (default: wiring)"
    )
    validate_parser.add_argument(
        "--kubernetes-version",
        help="Schema version for the schema oracle (default: from kubewire.json or 1.28)"
    )
    validate_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON"
    )

    resolve_parser = subparsers.add_parser(
        "resolve",
        parents=[verbose],
        help="Print the materialized environment of a Deployment"
    )
    resolve_parser.add_argument("workload", help="Deployment name, e.g. webapp-deployment")
    resolve_parser.add_argument("paths", nargs="*", help="Manifest files or directories")
    resolve_parser.add_argument("--container", help="Container name (default: first container)")
    resolve_parser.add_argument(
        "--show-secrets",
        action="store_true",
        help="Print Secret-derived values instead of masking them"
    )

    simulate_parser = subparsers.add_parser(
        "simulate",
        parents=[verbose],
        help="Apply the manifests to an in-memory cluster model"
    )
    simulate_parser.add_argument("paths", nargs="*", help="Manifest files or directories")
    simulate_parser.add_argument(
        "--skip",
        action="append",
        default=[],
        metavar="KIND/NAME",
        help="Leave an object out of the apply sequence (repeatable)"
    )

    export_parser = subparsers.add_parser(
        "export",
        parents=[verbose],
        help="Write the packaged manifests to a directory"
    )
    export_parser.add_argument("--out", required=True, help="Output directory")

    apply_parser = subparsers.add_parser(
        "apply",
        parents=[verbose],
        help="kubectl apply the four manifests in order"
    )
    apply_parser.add_argument("--dir", default="manifests", help="Manifest directory (default: manifests)")
    apply_parser.add_argument("--dry-run", action="store_true", help="Pass --dry-run=client to kubectl")
    apply_parser.add_argument("--context", help="kubectl context (default: from kubewire.json)")

    status_parser = subparsers.add_parser(
        "status",
        parents=[verbose],
        help="Show pods, services, ConfigMaps and Secrets"
    )
    status_parser.add_argument("--context", help="kubectl context (default: from kubewire.json)")

    delete_parser = subparsers.add_parser(
        "delete",
        parents=[verbose],
        help="kubectl delete the manifests in reverse order"
    )
    delete_parser.add_argument("--dir", default="manifests", help="Manifest directory (default: manifests)")
    delete_parser.add_argument("--context", help="kubectl context (default: from kubewire.json)")

    url_parser = subparsers.add_parser(
        "url",
        parents=[verbose],
        help="Print the external URL of a NodePort service via minikube"
    )
    url_parser.add_argument("service", nargs="?", default=DEFAULT_WEB_SERVICE, help="Service name")

    return parser


def main(argv=None):
    """Main CLI entrypoint for kubewire."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Setup logging
    if getattr(args, "verbose", False):
        logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
    else:
        logging.basicConfig(level=logging.WARNING, format='%(levelname)s: %(message)s')

    handlers = {
        "validate": cmd_validate,
        "resolve": cmd_resolve,
        "simulate": cmd_simulate,
        "export": cmd_export,
        "apply": cmd_apply,
        "status": cmd_status,
        "delete": cmd_delete,
        "url": cmd_url,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        return handler(args)
    except KubewireError as e:
        print(f"Error: {e}", file=sys.stderr)
        logger.exception("Command failed")
        return 1


def _load(paths) -> ManifestSet:
    if paths:
        return ManifestSet.from_paths(paths)
    return tutorial_manifests()


def cmd_validate(args):
    """Handle validate command."""
    manifests = _load(args.paths)
    config = get_oracle_config(args.oracles)
    oracles = config.get_oracles(kubernetes_version=args.kubernetes_version)

    violations = run_oracles(manifests, oracles)
    errors = [v for v in violations if v.is_error]

    if args.json:
        report = {
            "oracles": config.name,
            "files": list(manifests.files),
            "errors": len(errors),
            "warnings": len(violations) - len(errors),
            "violations": [v.to_dict() for v in violations],
        }
        print(json.dumps(report, indent=2))
        return 1 if errors else 0

    print(f"Validating {len(manifests.files)} file(s) with oracle set '{config.name}'")
    for v in violations:
        print(f"  {v.format()}")

    if errors:
        print(f"\n{len(errors)} error(s), {len(violations) - len(errors)} warning(s)")
        return 1
    print(f"\nOK: {len(violations)} warning(s)")
    return 0


def cmd_resolve(args):
    """Handle resolve command."""
    objects = ManifestObjects.from_manifest_set(_load(args.paths))
    try:
        workload = objects.workload(args.workload)
    except KeyError as e:
        print(f"Error: {e.args[0]}", file=sys.stderr)
        return 1

    try:
        environment = resolve_environment(workload, objects, container=args.container)
    except ReferenceResolutionError as e:
        print(f"{workload.name}: {e.reason}: {e}", file=sys.stderr)
        return 1
    except KeyError as e:
        print(f"Error: {e.args[0]}", file=sys.stderr)
        return 1

    secret_vars = secret_variable_names(workload.container(args.container), objects, workload.namespace)
    for name, value in environment.items():
        shown = value if args.show_secrets or name not in secret_vars else "********"
        print(f"{name}={shown}")
    return 0


def cmd_simulate(args):
    """Handle simulate command."""
    cluster = simulate(_load(args.paths), skip=args.skip)

    print("PODS")
    for pod in cluster.pods():
        detail = pod.reason or ""
        print(f"  {pod.name:<45} {pod.phase:<8} {pod.ip:<12} {detail}")

    print("ENDPOINTS")
    for service in cluster.objects.services.values():
        endpoints = cluster.endpoints(service.name, service.namespace)
        rendered = ",".join(str(e) for e in endpoints) or "<none>"
        print(f"  {service.name:<45} {rendered}")

    print("EVENTS")
    for event in cluster.events():
        print(f"  {event}")

    return 0 if cluster.healthy else 1


def cmd_export(args):
    """Handle export command."""
    written = tutorial_manifests().write_to_dir(args.out)
    for path in written:
        print(f"Wrote {path}")
    return 0


def cmd_apply(args):
    """Handle apply command."""
    kubectl = Kubectl(context=args.context, dry_run=args.dry_run)
    for result in apply_manifests(kubectl, args.dir):
        print(result.stdout.rstrip())
    return 0


def cmd_status(args):
    """Handle status command."""
    kubectl = Kubectl(context=args.context)
    for result in status(kubectl):
        print(result.stdout.rstrip())
        print()
    return 0


def cmd_delete(args):
    """Handle delete command."""
    kubectl = Kubectl(context=args.context)
    for result in delete_manifests(kubectl, args.dir):
        print(result.stdout.rstrip())
    return 0


def cmd_url(args):
    """Handle url command."""
    print(service_url(args.service))
    return 0


if __name__ == "__main__":
    sys.exit(main())
