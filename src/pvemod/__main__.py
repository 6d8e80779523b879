"""Allow ``python -m pvemod``."""

from pvemod.cli import main

if __name__ == "__main__":
    main()
