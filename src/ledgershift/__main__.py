"""Allow ``python -m ledgershift``."""

import sys

from ledgershift.cli import main

sys.exit(main())
