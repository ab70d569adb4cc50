"""Program entry point (CLI dispatcher).

Also the target of the installed git hooks: `python -m gitvault.main encrypt`.
"""
from __future__ import annotations
from gitvault.cli.commands import cli

def main():  # pragma: no cover - thin wrapper
	cli()

if __name__ == '__main__':  # pragma: no cover
	main()
