"""Allow running A-Train with ``python -m atrain``."""

from atrain.cli import main

main()
