import json
from pathlib import Path

import pytest

from data.models import ChatMessage, Transcript
from storage.artifact_store import ArtifactStore


@pytest.mark.asyncio
async def test_materialize_writes_transcript_and_release_deletes_it(tmp_path):
    store = ArtifactStore(temp_dir=str(tmp_path))
    transcript = Transcript.from_messages("Café", [ChatMessage(role="user", content="bonjour")])

    artifact = await store.materialize("abc", transcript)

    with open(artifact.path, encoding="utf-8") as f:
        document = json.load(f)
    assert document["title"] == "Café"
    assert document["total_count"] == 1
    assert artifact.jobId == "abc"
    assert [p.name for p in store.leftover_files()] == [Path(artifact.path).name]

    store.release(artifact)
    store.release(artifact)
    assert store.leftover_files() == []


@pytest.mark.asyncio
async def test_each_materialization_gets_its_own_file(tmp_path):
    store = ArtifactStore(temp_dir=str(tmp_path))

    first = await store.materialize("abc", Transcript())
    second = await store.materialize("abc", Transcript())

    assert first.path != second.path
    assert len(store.leftover_files()) == 2
