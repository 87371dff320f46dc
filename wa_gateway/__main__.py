"""Allow ``python -m wa_gateway``."""

from .cli import app

if __name__ == "__main__":
    app()
