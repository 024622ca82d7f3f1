"""Command-line interface for deb-offline."""

from __future__ import annotations

import argparse
import sys

from deb_offline import __version__
from deb_offline.offline_bundle import (
    DEFAULT_ARCHITECTURE,
    DEFAULT_DISTRO,
    DEFAULT_MIRROR,
    PORTS_MIRROR,
    REQUIRED_TOOL,
    build_offline_bundle,
    check_prerequisites,
)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="deb-offline",
        description="Bundle a Debian/Ubuntu package and its missing dependencies for offline installation",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "package",
        nargs="?",
        help="Name of the package to bundle",
    )
    parser.add_argument(
        "architecture",
        nargs="?",
        default=DEFAULT_ARCHITECTURE,
        help=f"Target architecture (default: {DEFAULT_ARCHITECTURE})",
    )
    parser.add_argument(
        "distro",
        nargs="?",
        default=DEFAULT_DISTRO,
        help=f"Target Ubuntu release (default: {DEFAULT_DISTRO})",
    )
    parser.add_argument(
        "--codename",
        help="Archive codename of the base image index (default: derived from distro)",
    )
    parser.add_argument(
        "--mirror",
        help=f"Ubuntu archive mirror (default: {DEFAULT_MIRROR} for amd64/i386, {PORTS_MIRROR} otherwise)",
    )
    parser.add_argument(
        "-o", "--output-dir",
        help="Bundle directory (default: <package>-offline)",
    )
    parser.add_argument(
        "--skip-prereq-check",
        action="store_true",
        help=f"Don't check that {REQUIRED_TOOL} is installed",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress progress messages",
    )
    return parser


def print_usage() -> None:
    print("Usage: deb-offline <package_name> [architecture] [distro]", file=sys.stderr)
    print("Example: deb-offline git", file=sys.stderr)
    print("Example: deb-offline git arm64", file=sys.stderr)
    print("Example: deb-offline git arm64 20.04", file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.package:
        print_usage()
        return 1

    if not args.skip_prereq_check and not check_prerequisites(REQUIRED_TOOL):
        print(
            f"{REQUIRED_TOOL} is not installed. "
            f"Please install it first using 'sudo apt install {REQUIRED_TOOL}'.",
            file=sys.stderr,
        )
        return 1

    try:
        build_offline_bundle(
            package=args.package,
            architecture=args.architecture,
            distro=args.distro,
            codename=args.codename,
            mirror=args.mirror,
            output_dir=args.output_dir,
            verbose=not args.quiet,
        )
    except (RuntimeError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
