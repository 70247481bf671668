"""Module entrypoint for ``python -m docsync``.

This keeps module-mode execution behavior identical to the CLI script.
All argument parsing and command dispatch happen in ``docsync.cli``.
"""

from .cli import main


if __name__ == "__main__":
    main()
