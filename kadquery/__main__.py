import sys

from kadquery.cli import main

sys.exit(main())
