import sys

from shadowmigrate.cli import main

sys.exit(main())
