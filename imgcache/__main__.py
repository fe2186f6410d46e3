"""
Entry point for the imgcache command.
Maps library errors to rich error panels and process exit codes.
"""

import logging
import sys

import typer
from rich.console import Console

from imgcache.cli.app import app
from imgcache.cli.formatters import format_error_with_suggestions
from imgcache.exceptions import ConfigurationError, ImgCacheError

EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def _exit_code_for(error: ImgCacheError) -> int:
    if isinstance(error, ConfigurationError):
        return EXIT_CONFIG
    return EXIT_FAILURE


def main() -> None:
    log = logging.getLogger("imgcache")
    console = Console(stderr=True)

    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except KeyboardInterrupt:
        # `imgcache worker` is normally stopped this way
        console.print("\n[yellow]Interrupted, pending jobs stay queued.[/yellow]")
        sys.exit(EXIT_INTERRUPTED)
    except ImgCacheError as e:
        console.print(format_error_with_suggestions(e))
        sys.exit(_exit_code_for(e))
    except Exception as e:
        console.print(format_error_with_suggestions(e, {"type": "Unexpected"}))
        log.debug("Full traceback:", exc_info=True)
        sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
