"""Allow ``python -m campaign_engine``."""

import sys

from campaign_engine.cli import main

sys.exit(main())
