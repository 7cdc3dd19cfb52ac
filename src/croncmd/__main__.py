"""Allow ``python -m croncmd``."""

from croncmd.cli.app import main

if __name__ == "__main__":
    main()
