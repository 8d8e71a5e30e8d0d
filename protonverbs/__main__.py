import sys

from protonverbs.cli import main

raise SystemExit(main(sys.argv[1:]))
