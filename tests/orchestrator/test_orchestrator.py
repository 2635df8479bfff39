from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from insight_hub.errors import ConflictError, UpstreamError, ValidationError
from insight_hub.models import JobStatus
from insight_hub.orchestrator import build_orchestrator

ALPHA = "UCalpha000000000000000001"


def test_add_channel_by_external_id(orchestrator, store) -> None:  # noqa: ANN001
    channel = orchestrator.add_channel("  Alpha  ", external_id=ALPHA)
    assert channel.id.startswith("ch_")
    assert channel.name == "Alpha"
    assert store.get_channel(channel.id).external_id == ALPHA
    with pytest.raises(ConflictError):
        orchestrator.add_channel("Again", external_id=ALPHA)


def test_add_channel_resolves_handle(orchestrator, catalog) -> None:  # noqa: ANN001
    catalog.add_channel(ALPHA, handle="@alpha")
    channel = orchestrator.add_channel("Alpha", handle="alpha")
    assert channel.handle == "@alpha"
    assert channel.external_id == ALPHA


def test_add_channel_defers_resolution_on_upstream_error(orchestrator, catalog, monkeypatch) -> None:  # noqa: ANN001
    def unavailable(handle):  # noqa: ANN001
        raise UpstreamError("catalog down", status_code=503)

    monkeypatch.setattr(catalog, "resolve_channel", unavailable)
    channel = orchestrator.add_channel("Alpha", handle="@alpha")
    assert channel.external_id is None


@pytest.mark.parametrize(("name", "external_id", "handle"), [("", ALPHA, None), ("Alpha", None, None)])
def test_add_channel_validation(orchestrator, name, external_id, handle) -> None:  # noqa: ANN001
    with pytest.raises(ValidationError):
        orchestrator.add_channel(name, external_id=external_id, handle=handle)


def test_poll_process_and_sweep(orchestrator, make_channel, catalog, clock, summarizer, exporter, notifier) -> None:  # noqa: ANN001
    make_channel(external_id=ALPHA)
    catalog.add_channel(ALPHA)
    catalog.add_item(ALPHA, "AAAAAAAAAA1", "First upload")

    assert orchestrator.poll().new_items == 1
    report = orchestrator.process_jobs()

    assert report.to_dict() == {"processed": 1, "success": 1, "errors": []}
    job = orchestrator.jobs.list_jobs()[0]
    assert job.status is JobStatus.DONE
    assert job.result.doc_id == "doc-AAAAAAAAAA1"
    assert exporter.exported == ["AAAAAAAAAA1"]
    assert notifier.sent == ["AAAAAAAAAA1"]
    assert orchestrator.sweep() == 0


def test_register_schedules_maps_every_task(orchestrator) -> None:  # noqa: ANN001
    scheduler = MagicMock()
    orchestrator.register_schedules(scheduler)

    names = [call.args[0] for call in scheduler.schedule_task.call_args_list]
    assert names == ["poll", "jobs", "renew", "sweep"]
    callbacks = {call.args[0]: call.args[2] for call in scheduler.schedule_task.call_args_list}
    assert callbacks["sweep"] == orchestrator.sweep
    scheduler.start.assert_called_once()


def test_build_orchestrator_uses_config(config_repository, catalog, hub, summarizer, isolated_home) -> None:  # noqa: ANN001
    orchestrator = build_orchestrator(
        config_repository, catalog=catalog, hub=hub, summarizer=summarizer
    )
    try:
        assert orchestrator.store.db_path == isolated_home.resolve() / "data" / "insight_hub.db"
        assert orchestrator.exporter is not None
        # No webhook URL in the environment, so notifications stay off.
        assert orchestrator.notifier is None
        assert orchestrator.leases.callback_url() == "http://localhost:8080/api/youtube/websub/callback"
    finally:
        orchestrator.close()


def test_build_orchestrator_wires_secrets(config_repository, catalog, hub, summarizer, monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setenv("WEBSUB_SECRET", "s3")
    monkeypatch.setenv("WEBSUB_CALLBACK_TOKEN", "tok")
    monkeypatch.setenv("CHAT_WEBHOOK_URL", "https://chat.example/hook")
    orchestrator = build_orchestrator(
        config_repository, catalog=catalog, hub=hub, summarizer=summarizer
    )
    try:
        assert orchestrator.push.secret == "s3"
        assert orchestrator.leases.callback_url().endswith("/callback/tok")
        assert orchestrator.notifier is not None
    finally:
        orchestrator.close()
