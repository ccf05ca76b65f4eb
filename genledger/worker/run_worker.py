"""Run ARQ worker. Usage: python -m genledger.worker.run_worker"""

from arq import run_worker

from genledger.worker.tasks import WorkerSettings


def main() -> None:
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
