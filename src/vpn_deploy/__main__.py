"""Allow running as python -m vpn_deploy."""

from vpn_deploy.cli.main import main

if __name__ == '__main__':
    main()
