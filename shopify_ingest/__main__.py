import sys

from shopify_ingest.cli import main

sys.exit(main())
