import sys

from munkisrv.cli import main

sys.exit(main())
