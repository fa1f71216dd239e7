"""Entry point for running the proxy directly."""

from .cli import main

if __name__ == "__main__":
    main()
