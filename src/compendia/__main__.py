"""Entry point for 'python -m compendia' command."""

from compendia.cli import main

if __name__ == "__main__":
    main()
