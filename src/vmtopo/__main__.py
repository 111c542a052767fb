"""Allow ``python -m vmtopo``."""

from vmtopo.cli.main import main

main()
