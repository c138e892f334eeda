"""
Interactive shell for the tea-ordering CLI.

- app: `App`, owner of the live `AppState` and the command set
- main: click entry point (`chagee`) and the line REPL
"""

__version__ = "0.1.0"

__all__ = ["app", "main"]
