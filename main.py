#!/usr/bin/env python3
"""
deploygate - token-scoped image updates for Kubernetes Deployments.
"""

import argparse
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep gateway imports lazy (inside functions) so `--help` does not import
# FastAPI or the kubernetes client.
#


def print_config() -> int:
    """Print the resolved configuration (no secrets are part of it). Returns an exit code."""
    import json

    from deploygate.auth.config import load_auth_config
    from deploygate.providers.k8s_provider import FIELD_MANAGER, default_namespace

    try:
        cfg = load_auth_config()
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    payload = {
        "userinfo_url": cfg.userinfo_url,
        "capability_schema": cfg.capability_schema,
        "userinfo_timeout_seconds": cfg.timeout_seconds,
        "namespace": default_namespace(),
        "field_manager": FIELD_MANAGER,
    }
    print(json.dumps(payload, indent=2, sort_keys=False))
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Gateway that lets token holders change the image of allowed Deployments",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the HTTP gateway
  python main.py --serve --port 8000

  # Show which identity provider / namespace would be used
  python main.py --print-config
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the HTTP gateway")
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Listen port (default: 8000)")
    parser.add_argument("--print-config", action="store_true", help="Print resolved configuration and exit")

    args = parser.parse_args()

    if args.print_config:
        sys.exit(print_config())

    if args.serve:
        from deploygate.api.server import run

        run(host=args.host, port=args.port)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
