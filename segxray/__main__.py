"""
Module entry point for: python -m segxray

Allows running the engine directly as a module:
    python -m segxray extract <snapshot.json> [options]
    python -m segxray extract-pdf <file.pdf> [options]
    python -m segxray serve [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
