"""Allow `python -m taskagenda` to run the diagnostic CLI."""

from taskagenda.main import run

run()
