import sys

from media_cookbook.cli.app import main

if __name__ == "__main__":
    sys.exit(main())
