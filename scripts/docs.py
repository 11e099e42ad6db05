"""Build and serve the libwiz documentation."""

from __future__ import annotations

import argparse
import functools
import http.server
import shutil
import subprocess
import sys
from pathlib import Path

DOCS_DIR = Path(__file__).resolve().parent.parent / "docs"
BUILD_DIR = DOCS_DIR / "_build" / "html"


def build(clean: bool = True) -> None:
    """Run sphinx-build into docs/_build/html."""
    if clean and BUILD_DIR.exists():
        shutil.rmtree(BUILD_DIR)

    result = subprocess.run(
        [sys.executable, "-m", "sphinx", "-b", "html", str(DOCS_DIR), str(BUILD_DIR)],
        cwd=DOCS_DIR.parent,
    )
    if result.returncode != 0:
        print("Documentation build failed!")
        sys.exit(result.returncode)

    print(f"\nDocumentation built at: file://{BUILD_DIR}/index.html")


def serve(port: int) -> None:
    """Build, then serve the HTML output until interrupted."""
    build()

    handler = functools.partial(http.server.SimpleHTTPRequestHandler, directory=str(BUILD_DIR))
    with http.server.ThreadingHTTPServer(("", port), handler) as httpd:
        print(f"\nServing documentation at http://localhost:{port}/")
        print("Press Ctrl+C to stop.")
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            print("\nStopping server...")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Documentation tools")
    parser.add_argument("command", choices=["build", "serve"])
    parser.add_argument("--port", type=int, default=8000, help="Port for serve")
    parser.add_argument("--no-clean", action="store_true", help="Keep the previous build")
    args = parser.parse_args()

    if args.command == "build":
        build(clean=not args.no_clean)
    else:
        serve(args.port)
