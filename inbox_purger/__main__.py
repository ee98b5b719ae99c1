import sys

from inbox_purger.cli import main


sys.exit(main())
