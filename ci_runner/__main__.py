from ci_runner.cli import cli

if __name__ == "__main__":
    cli()
