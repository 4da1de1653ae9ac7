"""
The :code:`__main__` module is used as an entrypoint when calling the module from the terminal using python -m flag.
It contains functions providing a comandline interface to the server module.

Its :code:`main()` function is also exported as an consol-entrypoint.
"""

import logging

try:
    import click
except ImportError as e:
    print(e)
    print("Try using 'pip install s7plc[cli]'")
    exit()

from s7plc import __version__
from s7plc.server import mainloop

logger = logging.getLogger("s7plc.server")


@click.command()
@click.option("-p", "--port", default=1102, help="Port the server will listen on.")
@click.option("--db", "db_numbers", multiple=True, type=int, default=[1], show_default=True, help="Data block to serve, repeatable.")
@click.option("--db-size", default=1024, show_default=True, help="Size of each data block in bytes.")
@click.option("-v", "--verbose", is_flag=True, help="Also print debug-output.")
@click.version_option(__version__)
@click.help_option("-h", "--help")
def main(port: int, db_numbers: tuple, db_size: int, verbose: bool) -> None:
    """Start an S7 server emulator with zeroed data blocks."""

    # setup logging
    if verbose:
        logging.basicConfig(format="[%(levelname)s]: %(message)s", level=logging.DEBUG)
    else:
        logging.basicConfig(format="[%(levelname)s]: %(message)s", level=logging.INFO)

    logger.info(f"Serving DB {', '.join(str(n) for n in db_numbers)} ({db_size} bytes each)")
    mainloop(port, db_numbers=tuple(db_numbers), db_size=db_size)


if __name__ == "__main__":
    main()
