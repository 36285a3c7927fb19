"""Celery application for batch import runs and webhook delivery."""

import ssl

from celery import Celery

from batch_import.core.config import get_settings

settings = get_settings()

TLS_QUERY_PARAM = "ssl_cert_reqs=none"


def _with_tls(url: str) -> str:
    """Upstash requires TLS even when configured with redis://."""
    if ".upstash.io" in url and url.startswith("redis://"):
        url = url.replace("redis://", "rediss://", 1)
    # The Redis result backend reads ssl_cert_reqs from the URL during initialization
    if url.startswith("rediss://") and "ssl_cert_reqs" not in url:
        separator = "&" if "?" in url else "?"
        url = f"{url}{separator}{TLS_QUERY_PARAM}"
    return url


broker_url = _with_tls(settings.celery_broker_url or settings.redis_url)
backend_url = _with_tls(settings.celery_result_url or settings.redis_url)
is_ssl = broker_url.startswith("rediss://") or backend_url.startswith("rediss://")

celery_app = Celery(
    "batch_import",
    broker=broker_url,
    backend=backend_url,
)

celery_config = {
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    # Runs resume from the checkpoint, so redelivery after a crash is safe
    "task_acks_late": True,
    "task_reject_on_worker_lost": True,
    "worker_prefetch_multiplier": 1,
    "result_expires": 3600,
    "broker_connection_retry_on_startup": True,
    "worker_hijack_root_logger": False,
    "result_backend_always_retry": True,
    "result_backend_max_retries": 3,
    "task_routes": {
        "batch_import.workers.tasks.run_batch_import": {"queue": "imports"},
        "batch_import.workers.tasks.webhook_dispatch_async": {"queue": "webhooks"},
    },
    "task_default_queue": "imports",
}

if is_ssl:
    ssl_dict = {"ssl_cert_reqs": ssl.CERT_NONE}
    celery_config["broker_use_ssl"] = ssl_dict
    celery_config["redis_backend_use_ssl"] = ssl_dict
    celery_config["broker_transport_options"] = ssl_dict.copy()
    celery_config["result_backend_transport_options"] = ssl_dict.copy()

celery_app.conf.update(celery_config)

# Register tasks with celery_app
from batch_import.workers.tasks import run_batch_import, webhook_dispatch_async  # noqa: E402,F401
