"""Run ARQ worker. Usage: python -m registrar.worker.run_worker"""

from arq import run_worker

from registrar.worker.tasks import WorkerSettings


def main() -> None:
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
