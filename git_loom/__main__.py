import sys

from git_loom.cli.main import main

sys.exit(main())
