from n8n_cloudrun.cli.main import main

__all__ = ["main"]
