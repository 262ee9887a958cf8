"""Allow running the agent with ``python -m devcontainer_portforward``."""

from devcontainer_portforward.cli.main import main

if __name__ == "__main__":
    main()
