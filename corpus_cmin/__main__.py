"""Allow ``python -m corpus_cmin``."""

import sys

from corpus_cmin.cli.main import main

sys.exit(main())
