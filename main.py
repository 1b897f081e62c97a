import configparser
import logging
import os
import sys
from typing import Callable, Dict, Iterable, List, Optional, TextIO, Tuple

from simpledb import (
    DatabaseError,
    InMemoryDB,
    MissingArgument,
    UnrecognizedCommand,
)

config = configparser.ConfigParser(interpolation=None)
config.read(os.environ.get("SIMPLEDB_CONFIG", "config.ini"))

logger = logging.getLogger("SimpleDB")

NULL = "NULL"

BANNER = (
    "SimpleDB start working\n"
    "Available commands: SET, GET, UNSET, NUMEQUALTO, BEGIN, ROLLBACK, COMMIT, END"
)


def configure_logging() -> None:
    logging.basicConfig(
        filename=config.get("DEFAULT", "LOG_FILE", fallback="db_logs"),
        level=config.get("DEFAULT", "LOG_LEVEL", fallback="INFO").upper(),
        format=config.get(
            "DEFAULT", "LOG_FORMAT", fallback="%(asctime)s - %(levelname)s - %(message)s"
        ),
    )


def _end_session(_db: InMemoryDB, _args: List[str]) -> None:
    logger.info("SESSION ENDED")
    sys.exit(0)


def _get(db: InMemoryDB, args: List[str]) -> str:
    value = db.get_value(args[0])
    return NULL if value is None else value


# command -> (required argument count, handler)
command_handlers: Dict[str, Tuple[int, Callable[[InMemoryDB, List[str]], Optional[str]]]] = {
    "END": (0, _end_session),
    "BEGIN": (0, lambda db, _: db.begin_transaction()),
    "ROLLBACK": (0, lambda db, _: db.rollback_transaction()),
    "COMMIT": (0, lambda db, _: db.commit_transaction()),
    "SET": (2, lambda db, args: db.set_value(args[0], args[1])),
    "GET": (1, _get),
    "UNSET": (1, lambda db, args: db.unset_value(args[0])),
    "NUMEQUALTO": (1, lambda db, args: str(db.count_value(args[0]))),
}


def execute(db: InMemoryDB, line: str) -> Optional[str]:
    """
    Run one command line against db and return the text to print, if any.
    Raises DatabaseError subclasses for user errors; nothing is mutated then.
    """
    tokens = line.split()
    if not tokens:
        return None

    command, args = tokens[0], tokens[1:]
    if command not in command_handlers:
        raise UnrecognizedCommand(command)

    arity, handler = command_handlers[command]
    if len(args) < arity:
        raise MissingArgument(f"{command} takes {arity} argument(s), got {len(args)}")
    return handler(db, args)


def run(db: InMemoryDB, lines: Iterable[str], out: TextIO = sys.stdout) -> int:
    """
    Drive a whole session and return the process exit code
    """
    try:
        for line in lines:
            try:
                result = execute(db, line)
            except DatabaseError as e:
                print(e.message, file=out)
                logger.warning(f"{type(e).__name__}: {e}")
                continue
            if result is not None:
                print(result, file=out)
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 0
    except KeyboardInterrupt:
        logger.info("Session terminated by user")
        return 130
    except Exception as e:
        print(f"CRITICAL ERROR: {str(e)}", file=out)
        logger.critical(f"Unspecified error: {str(e)}")
        return 1

    logger.info("Session terminated by EOF")
    return 0


def _interactive_lines(prompt: str) -> Iterable[str]:
    while True:
        try:
            yield input(prompt)
        except EOFError:
            return


def main() -> None:
    configure_logging()
    db = InMemoryDB()
    logger.info("SESSION STARTED")

    if sys.stdin.isatty():
        if config.getboolean("DEFAULT", "SHOW_BANNER", fallback=True):
            print(BANNER)
        lines = _interactive_lines(config.get("DEFAULT", "PROMPT", fallback=""))
    else:
        lines = sys.stdin

    sys.exit(run(db, lines))


if __name__ == "__main__":
    main()
