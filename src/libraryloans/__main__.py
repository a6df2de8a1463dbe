"""Main entry point for the libraryloans package."""

from libraryloans.cli import app


def main():
    """Run the command-line interface."""
    app()


if __name__ == "__main__":
    main()
