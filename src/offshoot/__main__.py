"""Allow ``python -m offshoot``."""

from offshoot.cli import cli

if __name__ == "__main__":
    cli()
