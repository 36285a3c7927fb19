"""Shared fixtures: in-memory SQLite, in-process coordination and fake collaborators."""

import os
import tempfile

# Settings are read at import time by the session and storage modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["UPLOADS_DIR"] = tempfile.mkdtemp(prefix="batch-import-uploads-")
os.environ["COORDINATION_BACKEND"] = "memory"
os.environ["SCHEDULER_BACKEND"] = "thread"
os.environ["AUTO_CREATE_TABLES"] = "false"

from pathlib import Path  # noqa: E402

import pytest  # noqa: E402

from batch_import.core.errors import ProductApplyError  # noqa: E402
from batch_import.db.models.catalog import Attribute, AttributeOption, Catalog  # noqa: E402
from batch_import.db.session import build_engine, build_session_factory, init_db  # noqa: E402
from batch_import.services.batch_control import BatchControl  # noqa: E402
from batch_import.services.checkpoint_store import CheckpointStore  # noqa: E402
from batch_import.services.control_signals import MemorySignalChannel  # noqa: E402
from batch_import.services.execution_lock import MemoryExecutionLock  # noqa: E402
from batch_import.services.job_repository import JobRepository  # noqa: E402
from batch_import.services.job_runner import JobRunner  # noqa: E402
from batch_import.services.product_applier import ApplyResult  # noqa: E402
from batch_import.services.progress_tracker import MemoryProgressTracker  # noqa: E402

CSV_HEADER = "sku,name,price,attr_color"


class FakeApplier:
    """Records every apply call; ``behaviours`` maps a row number to an exception or callable."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, int]] = []
        self.products: dict[str, int] = {}
        self.behaviours: dict[int, object] = {}
        self._skus: set[str] = set()

    def apply(self, job_id, row_number, command):
        self.calls.append((job_id, row_number))
        behaviour = self.behaviours.get(row_number)
        if isinstance(behaviour, Exception):
            raise behaviour
        if callable(behaviour):
            behaviour()
        key = f"{job_id}:{row_number}"
        if key in self.products:
            return ApplyResult(self.products[key], created=False)
        if command.sku.lower() in self._skus:
            raise ProductApplyError(f"SKU '{command.sku}' already exists")
        self.products[key] = len(self.products) + 1
        self._skus.add(command.sku.lower())
        return ApplyResult(self.products[key])

    def rows_applied(self, job_id: str) -> list[int]:
        return [row for called_job, row in self.calls if called_job == job_id]


class RecordingScheduler:
    def __init__(self) -> None:
        self.scheduled: list[str] = []

    def schedule(self, job_id: str) -> None:
        self.scheduled.append(job_id)


class FailingScheduler:
    def schedule(self, job_id: str) -> None:
        raise ConnectionError("broker unreachable")


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []

    def notify(self, event_type: str, job_id: str) -> None:
        self.events.append((event_type, job_id))


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def repository(session_factory):
    return JobRepository(session_factory)


@pytest.fixture
def checkpoints(session_factory):
    return CheckpointStore(session_factory)


@pytest.fixture
def applier():
    return FakeApplier()


@pytest.fixture
def signals():
    return MemorySignalChannel()


@pytest.fixture
def locks():
    return MemoryExecutionLock()


@pytest.fixture
def progress():
    return MemoryProgressTracker()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def make_runner(repository, checkpoints, applier, session_factory, signals, locks, progress, notifier):
    def factory(runner_applier=None, **overrides) -> JobRunner:
        options = dict(
            session_factory=session_factory,
            signals=signals,
            locks=locks,
            progress=progress,
            notifier=notifier,
            apply_timeout_seconds=0,
            max_consecutive_apply_failures=3,
            progress_publish_every=1,
        )
        options.update(overrides)
        return JobRunner(repository, checkpoints, runner_applier or applier, **options)

    return factory


@pytest.fixture
def runner(make_runner):
    return make_runner()


@pytest.fixture
def control(repository, scheduler, signals, session_factory, progress, notifier):
    return BatchControl(
        repository,
        scheduler,
        signals,
        session_factory=session_factory,
        progress=progress,
        notifier=notifier,
        max_upload_bytes=1024 * 1024,
        max_retries=2,
    )


@pytest.fixture
def catalog(session_factory):
    """Catalog with a ``color`` select attribute (red, green, blue)."""
    with session_factory() as session:
        catalog = Catalog(name="Apparel")
        session.add(catalog)
        session.flush()
        color = Attribute(name="color", kind="select", catalog_id=catalog.id)
        color.options = [AttributeOption(value=value) for value in ("red", "green", "blue")]
        session.add(color)
        session.commit()
        return catalog.id


def csv_bytes(*rows: str, header: str = CSV_HEADER) -> bytes:
    return ("\n".join((header, *rows)) + "\n").encode("utf-8")


@pytest.fixture
def start_job(control):
    """Create a job, attach ``rows`` and start it (the scheduler only records)."""

    def factory(*rows: str, header: str = CSV_HEADER, catalog_id: int | None = None) -> str:
        job = control.create("Spring catalog", catalog_id=catalog_id)
        control.attach_file(job.id, csv_bytes(*rows, header=header), "products.csv")
        control.start(job.id)
        return job.id

    return factory


@pytest.fixture
def five_rows() -> list[str]:
    return [
        "SKU-1,Shirt,10.00,red",
        "SKU-2,Trousers,20.00,green",
        "SKU-3,,30.00,blue",
        "SKU-4,Hat,5.50,red",
        "SKU-5,Scarf,7.25,ultraviolet",
    ]


def source_path(repository: JobRepository, job_id: str) -> Path:
    return Path(repository.get(job_id).source_file_path)
