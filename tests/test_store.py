"""
Tests for the job stores and the local content store.
"""

import asyncio
import json
import threading

import pytest

from docucrawl import store as store_module
from docucrawl.content_store import LocalContentStore
from docucrawl.models import Credentials, Job, JobStatus, MessageType, ProgressMessage, Screen
from docucrawl.store import InMemoryJobStore, JsonFileJobStore


def make_job(**kwargs):
    return Job(owner_id="u1", app_url="https://app.example.com", **kwargs)


class TestInMemoryStore:

    def test_update_is_single_replacement(self):
        store = InMemoryJobStore()
        job = make_job()
        asyncio.run(store.create_job(job))
        updated = asyncio.run(store.update_job(job.id, status=JobStatus.CRAWLING, error=None))
        assert updated.status is JobStatus.CRAWLING
        assert job.status is JobStatus.QUEUED

    def test_unknown_field_rejected(self):
        store = InMemoryJobStore()
        job = make_job()
        asyncio.run(store.create_job(job))
        with pytest.raises(AttributeError):
            asyncio.run(store.update_job(job.id, colour="red"))

    def test_unknown_job(self):
        with pytest.raises(KeyError):
            asyncio.run(InMemoryJobStore().get_job("missing"))

    def test_screens_listed_in_order(self):
        store = InMemoryJobStore()
        for i in (2, 0, 1):
            asyncio.run(store.insert_screen(Screen(job_id="j", url="u", route_path="/", order_index=i)))
        assert [s.order_index for s in asyncio.run(store.list_screens("j"))] == [0, 1, 2]
        assert asyncio.run(store.count_screens("j")) == 3

    def test_recent_progress(self):
        store = InMemoryJobStore()
        for i in range(5):
            asyncio.run(store.add_progress(ProgressMessage(job_id="j", type=MessageType.INFO, message=str(i))))
        assert [m.message for m in asyncio.run(store.list_progress("j", limit=2))] == ["3", "4"]


class TestJsonFileStore:

    def test_survives_reload(self, tmp_path):
        store = JsonFileJobStore(str(tmp_path))
        job = make_job(credentials=Credentials("ada", "s3cret!"))
        asyncio.run(store.create_job(job))
        asyncio.run(store.update_job(job.id, status=JobStatus.DISCOVERING))
        asyncio.run(store.insert_screen(Screen(job_id=job.id, url="u", route_path="/a", order_index=0)))
        asyncio.run(store.set_credits("u1", 42))

        reloaded = JsonFileJobStore(str(tmp_path))
        again = asyncio.run(reloaded.get_job(job.id))
        assert again.status is JobStatus.DISCOVERING
        assert again.credentials is None
        assert len(asyncio.run(reloaded.list_screens(job.id))) == 1
        assert asyncio.run(reloaded.get_credits("u1")) == 42

    def test_password_never_written(self, tmp_path):
        store = JsonFileJobStore(str(tmp_path))
        job = make_job(credentials=Credentials("ada", "s3cret!"))
        asyncio.run(store.create_job(job))
        raw = (tmp_path / "jobs" / f"{job.id}.json").read_text()
        assert "s3cret!" not in raw
        assert json.loads(raw)["job"]["credentials"] == "<redacted>"

    def test_writes_run_off_the_event_loop(self, tmp_path, monkeypatch):
        threads = []
        real_write = store_module._write_json

        def recording_write(path, payload):
            threads.append(threading.get_ident())
            real_write(path, payload)

        monkeypatch.setattr(store_module, "_write_json", recording_write)
        store = JsonFileJobStore(str(tmp_path))

        async def _go():
            jobs = [make_job() for _ in range(3)]
            for job in jobs:
                await store.create_job(job)
            await asyncio.gather(*(
                store.add_progress(ProgressMessage(job_id=job.id, type=MessageType.INFO, message=str(i)))
                for job in jobs for i in range(5)
            ))
            return threading.get_ident(), jobs

        loop_thread, jobs = asyncio.run(_go())
        assert threads and loop_thread not in threads
        for job in jobs:
            data = json.loads((tmp_path / "jobs" / f"{job.id}.json").read_text())
            assert len(data["progress"]) == 5

    def test_corrupt_file_skipped(self, tmp_path):
        (tmp_path / "jobs").mkdir()
        (tmp_path / "jobs" / "bad.json").write_text("{not json")
        assert JsonFileJobStore(str(tmp_path))._jobs == {}


class TestLocalContentStore:

    def test_writes_file_and_returns_uri(self, tmp_path):
        store = LocalContentStore(str(tmp_path))
        url = asyncio.run(store.upload("job1", "003-invite-modal-invite", b"png"))
        assert url.startswith("file://")
        assert (tmp_path / "job1" / "003-invite-modal-invite.png").read_bytes() == b"png"

    def test_public_base_url(self, tmp_path):
        store = LocalContentStore(str(tmp_path), public_base_url="https://cdn.example.com/")
        url = asyncio.run(store.upload("job1", "Home Page", b"png"))
        assert url == "https://cdn.example.com/job1/home-page.png"
