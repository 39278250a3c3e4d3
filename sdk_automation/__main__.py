import sys

from sdk_automation.cli import main

sys.exit(main())
