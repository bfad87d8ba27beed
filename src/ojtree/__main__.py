"""Allow ``python -m ojtree``."""

from ojtree.pipeline import main

main()
