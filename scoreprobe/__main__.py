import sys

from scoreprobe.runner import main

sys.exit(main())
