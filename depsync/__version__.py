"""Single source of the depsync version, read by the CLI and packaging."""

__version__ = "0.1.0.dev0"
