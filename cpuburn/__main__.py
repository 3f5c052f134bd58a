import sys

from cpuburn.cli import main

raise SystemExit(main(sys.argv[1:]))
