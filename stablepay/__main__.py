"""Allow running the package as a module: python -m stablepay"""

import sys

from stablepay.cli import main

if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
