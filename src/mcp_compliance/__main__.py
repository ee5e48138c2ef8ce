"""Allow ``python -m mcp_compliance``."""

from .cli import main

if __name__ == "__main__":
    main()
