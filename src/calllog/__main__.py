"""Entry point for running the dispatcher CLI as a module.

Usage:
    python -m calllog validate-config
    python -m calllog --help
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env (CALLLOG_CONFIG_PATH) before the CLI reads config

from calllog.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
