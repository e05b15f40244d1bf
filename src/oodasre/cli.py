"""CLI entry point for oodasre."""

import argparse
import logging
import sys

from oodasre import __version__
from oodasre.workflow import run_demo, run_once


def main() -> int:
    parser = argparse.ArgumentParser(description="oodasre: OODA incident-response investigation loop")
    parser.add_argument("--demo", action="store_true", help="Inject a fault into the demo service and investigate it")
    parser.add_argument("--namespace", default="checkout", help="Namespace of the affected service (default: checkout)")
    parser.add_argument("--service-url", default=None, help="Base URL of the affected service (default from config)")
    parser.add_argument("--deployment", default=None, help="Deployment to remediate (default: the namespace)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.demo:
        ok = run_demo(service_url=args.service_url)
        return 0 if ok else 1
    ok = run_once(namespace=args.namespace, service_url=args.service_url, deployment=args.deployment)
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
