import sys

from memorypilot.cli import main

sys.exit(main())
