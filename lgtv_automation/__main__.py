import sys

from lgtv_automation.main import main

sys.exit(main())
