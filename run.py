#!/usr/bin/env python3
"""
Local launcher for the diocese site.

  ./run.py                          # development, reloader on
  ./run.py --env production --no-reload
  gunicorn "wsgi:app"               # production
"""

from __future__ import annotations

import argparse
import os

from dotenv import load_dotenv

ALIASES = {"dev": "development", "prod": "production", "test": "testing"}


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run the diocese site Flask app.")
    p.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    p.add_argument("--port", type=int, default=int(os.getenv("PORT", "5000")))
    p.add_argument("--env", choices=["development", "testing", "production", "dev", "prod", "test"], default=None)
    p.add_argument("--no-reload", action="store_true", help="Disable the Werkzeug reloader.")
    p.add_argument("--public-base-url", default=None, help="Public base URL (e.g. https://diocese.org.br).")
    return p.parse_args()


def main() -> None:
    load_dotenv(override=False)
    args = parse_args()

    env = ALIASES.get(args.env or "", args.env) or os.getenv("ENV") or "development"
    os.environ["ENV"] = env
    if args.public_base_url:
        os.environ["PUBLIC_BASE_URL"] = args.public_base_url.rstrip("/")

    from diocese_site import create_app

    app = create_app(env)
    debug = env != "production"
    app.logger.info("Starting on http://%s:%s (env=%s, debug=%s)", args.host, args.port, env, debug)
    app.run(host=args.host, port=args.port, debug=debug, use_reloader=debug and not args.no_reload)


if __name__ == "__main__":
    main()
