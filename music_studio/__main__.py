"""Entry point wrapper for ``python -m music_studio``.

Execution is forwarded to :func:`music_studio.main` so ``python -m
music_studio`` and the installed ``music-studio`` console script behave
identically.

Example
-------
Record that you liked a generation and export it with your preferences
embedded::

    python -m music_studio feedback --action like --text "calm jazz piano"
    python -m music_studio export result.json --output song.mid --embed-preferences
"""

from . import main

if __name__ == "__main__":
    main()
