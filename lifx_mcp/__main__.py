import sys

from lifx_mcp.server import main

sys.exit(main())
