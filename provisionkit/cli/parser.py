"""
ProvisionKit CLI argument parser.

This module implements the command-line interface for ProvisionKit using argparse.
"""

import argparse
import importlib
import logging
import sys
from pathlib import Path
from typing import List, Optional

from provisionkit import __version__
from provisionkit.cli.utils import EXIT_CANCELLED, EXIT_ERROR

logger = logging.getLogger(__name__)


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


class CLI:
    """ProvisionKit command-line interface."""

    def __init__(self):
        """Initialize CLI with argument parser."""
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """
        Create argument parser with all subcommands.

        Returns:
            Configured ArgumentParser instance
        """
        parser = argparse.ArgumentParser(
            prog="provisionkit",
            description="ProvisionKit - Declarative build-environment provisioning",
            epilog='Use "provisionkit COMMAND --help" for command-specific help',
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )

        # Global options
        parser.add_argument(
            "--version", action="version", version=f"ProvisionKit {__version__}"
        )
        parser.add_argument(
            "--verbose", "-v", action="store_true", help="Enable verbose output"
        )
        parser.add_argument(
            "--quiet",
            "-q",
            action="store_true",
            help="Enable minimal output (errors only)",
        )
        parser.add_argument(
            "--config",
            type=Path,
            metavar="PATH",
            help="Path to plan file (default: ./provision.yaml)",
        )
        parser.add_argument(
            "--project-root",
            type=Path,
            metavar="PATH",
            default=Path.cwd(),
            help="Project root directory (default: current directory)",
        )

        # Subcommands
        subparsers = parser.add_subparsers(
            dest="command", help="Available commands", metavar="COMMAND"
        )

        self._add_provision_command(subparsers)
        self._add_status_command(subparsers)

        return parser

    def _add_target_arguments(self, parser):
        parser.add_argument(
            "--arch",
            metavar="ARCH",
            help="Target architecture (x64, x86, arm64, arm); overrides PROVISIONKIT_ARCH",
        )
        parser.add_argument(
            "--install-root",
            type=Path,
            metavar="PATH",
            help="Install root; overrides PROVISIONKIT_INSTALL_ROOT",
        )

    def _add_provision_command(self, subparsers):
        """Add 'provision' subcommand."""
        parser = subparsers.add_parser(
            "provision",
            help="Run the provisioning plan",
            description="Install tools, fetch and build dependencies, publish the environment",
        )
        self._add_target_arguments(parser)
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List the steps a live run would execute without executing them",
        )
        persist = parser.add_mutually_exclusive_group()
        persist.add_argument(
            "--persist-env",
            dest="persist_env",
            action="store_true",
            default=None,
            help="Persist variables marked 'persist' in the plan",
        )
        persist.add_argument(
            "--no-persist-env",
            dest="persist_env",
            action="store_false",
            help="Only set variables for this process",
        )
        parser.add_argument(
            "--fetch-workers",
            type=_positive_int,
            metavar="N",
            help="Maximum concurrent independent fetches",
        )
        parser.add_argument(
            "--descriptor",
            type=Path,
            metavar="PATH",
            help="Toolchain descriptor to write (overrides the plan file)",
        )

    def _add_status_command(self, subparsers):
        """Add 'status' subcommand."""
        parser = subparsers.add_parser(
            "status",
            help="Show which steps are already satisfied",
            description="Probe every step and show the last recorded run",
        )
        self._add_target_arguments(parser)

    def parse_args(self, args: Optional[List[str]] = None):
        """
        Parse command-line arguments.

        Args:
            args: Arguments to parse (uses sys.argv if None)

        Returns:
            Parsed arguments namespace
        """
        return self.parser.parse_args(args)

    def run(self, args: Optional[List[str]] = None) -> int:
        """
        Run CLI with given arguments.

        Args:
            args: Arguments to parse (uses sys.argv if None)

        Returns:
            Exit code (0 for success, non-zero for error)
        """
        parsed_args = self.parse_args(args)

        # Configure logging
        self._configure_logging(parsed_args)

        # Check if command specified
        if not parsed_args.command:
            self.parser.print_help()
            return EXIT_ERROR

        # Dispatch to command handler
        try:
            return self._dispatch_command(parsed_args)
        except KeyboardInterrupt:
            logger.info("Operation cancelled by user")
            return EXIT_CANCELLED
        except Exception as e:
            logger.error(f"Error: {e}")
            if parsed_args.verbose:
                import traceback

                traceback.print_exc()
            return EXIT_ERROR

    def _configure_logging(self, args):
        """
        Configure logging based on verbose/quiet flags.

        Args:
            args: Parsed arguments with verbose/quiet flags
        """
        if args.verbose:
            level = logging.DEBUG
            format_str = "%(levelname)s [%(name)s] %(message)s"
        elif args.quiet:
            level = logging.ERROR
            format_str = "%(levelname)s: %(message)s"
        else:
            level = logging.INFO
            format_str = "%(message)s"

        logging.basicConfig(
            level=level,
            format=format_str,
            force=True,  # Reconfigure if already configured
        )

    def _dispatch_command(self, args) -> int:
        """
        Dispatch to appropriate command handler.

        Args:
            args: Parsed arguments with command field

        Returns:
            Exit code from command handler
        """
        command_map = {
            "provision": "provisionkit.cli.commands.provision",
            "status": "provisionkit.cli.commands.status",
        }

        module_name = command_map.get(args.command)
        if not module_name:
            logger.error(f"Unknown command: {args.command}")
            return EXIT_ERROR

        module = importlib.import_module(module_name)
        return module.run(args)


def main():
    """Main entry point for CLI."""
    cli = CLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
