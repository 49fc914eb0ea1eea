from tuning.cli import cli

cli()
