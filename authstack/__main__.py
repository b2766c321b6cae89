import sys

from authstack.cli import main

sys.exit(main())
