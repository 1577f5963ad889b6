from __future__ import annotations
import argparse

from .logging import setup_logging
from .services.test_run_service import TestRunService


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Run queued automated test jobs.")
    parser.add_argument("--once", action="store_true", help="run at most one job and exit")
    args = parser.parse_args(argv)

    log = setup_logging()
    svc = TestRunService()
    if args.once:
        outcome = svc.run_once()
        log.info("worker_done", state=outcome.state.value if outcome else None)
        return
    svc.run_forever()


if __name__ == "__main__":
    main()
