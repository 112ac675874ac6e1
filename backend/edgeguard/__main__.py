"""Allow `python -m edgeguard`."""

from edgeguard.main import run

if __name__ == "__main__":
    run()
