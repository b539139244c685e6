"""Run the helm-provider command line tool."""

from helm_provider.tool.helm_provider import main

if __name__ == "__main__":
    main()
