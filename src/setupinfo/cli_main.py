import sys


def main():
    """
    Console entry point.
    """
    try:
        from setupinfo.cli.commands import cli
        cli()
    except ImportError as e:
        print(f"Critical Error in CLI: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
