"""Allow ``python -m conductor``."""

from conductor.cli import app

app(prog_name="conductor")
