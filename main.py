from dotenv import load_dotenv

load_dotenv(override=True)

from permproxy.cli import cli

if __name__ == "__main__":
    cli()
