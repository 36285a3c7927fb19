#!/usr/bin/env python3
"""Start a Celery worker for batch import runs and webhook deliveries."""

import sys
import warnings

# Containers commonly run the worker as root
warnings.filterwarnings("ignore", category=UserWarning, message=".*superuser privileges.*")
warnings.filterwarnings("ignore", category=RuntimeWarning, message=".*superuser privileges.*")

from batch_import.workers.celery_app import celery_app  # noqa: E402

if __name__ == "__main__":
    celery_app.worker_main(
        argv=[
            "worker",
            "--loglevel=info",
            "--queues=imports,webhooks",
            "--pool=solo",
            "--without-mingle",
            "--without-gossip",
        ]
        + sys.argv[1:]
    )
