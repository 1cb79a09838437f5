"""Allow running the monitor with ``python -m pointsmonitor``."""

from pointsmonitor.main import run_main

if __name__ == "__main__":
    run_main()
