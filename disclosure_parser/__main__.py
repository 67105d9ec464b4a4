"""
Module entry point for: python -m disclosure_parser

Allows running the extractor directly as a module:
    python -m disclosure_parser extract <pdf_path> [options]
    python -m disclosure_parser batch <directory> [options]
    python -m disclosure_parser serve [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
