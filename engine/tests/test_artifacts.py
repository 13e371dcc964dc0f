"""Tests for the artifact store."""

import os

import pytest

from engine.src.services import artifacts
from engine.src.services.artifacts import ArtifactExtractError, ArtifactNotFoundError
from engine.tests.helpers import chunked, make_tarball

async def test_save_is_byte_identical():
    data = os.urandom(10_000)

    size = await artifacts.save("b1", chunked(data))

    assert size == len(data)
    assert artifacts.exists("b1")
    assert artifacts.path_for("b1").read_bytes() == data
    assert not artifacts.path_for("b1").with_name("b1.tar.gz.partial").exists()

async def test_save_replaces_existing():
    await artifacts.save("b1", chunked(b"old"))
    await artifacts.save("b1", chunked(b"new contents"))

    assert artifacts.path_for("b1").read_bytes() == b"new contents"

async def test_failed_upload_leaves_no_artifact():
    async def broken():
        yield b"partial"
        raise ConnectionError("client went away")

    with pytest.raises(ConnectionError):
        await artifacts.save("b2", broken())

    assert not artifacts.exists("b2")
    assert list(artifacts.artifacts_dir().iterdir()) == []

async def test_extract(tmp_path):
    tarball = make_tarball({"package.json": "{}", ".next/BUILD_ID": "abc"})
    await artifacts.save("b3", chunked(tarball))

    target = tmp_path / "out"
    await artifacts.extract("b3", target)

    assert (target / "package.json").read_text() == "{}"
    assert (target / ".next" / "BUILD_ID").read_text() == "abc"

async def test_extract_missing(tmp_path):
    with pytest.raises(ArtifactNotFoundError):
        await artifacts.extract("nope", tmp_path / "out")

async def test_extract_corrupt(tmp_path):
    await artifacts.save("b4", chunked(b"not a tarball"))

    with pytest.raises(ArtifactExtractError):
        await artifacts.extract("b4", tmp_path / "out")

async def test_delete():
    await artifacts.save("b5", chunked(b"data"))

    assert artifacts.delete("b5") is True
    assert not artifacts.exists("b5")
    assert artifacts.delete("b5") is False
