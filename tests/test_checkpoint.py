"""Tests for checkpoint encoding and the legacy format."""

import pytest

from crmsync.sync.checkpoint import (
    CHECKPOINT_VERSION,
    DEFAULT_PAGE_SIZE,
    Checkpoint,
    CheckpointError,
)


class TestCheckpoint:
    """Tests for the Checkpoint value object."""

    def test_new_has_run_id_and_no_token(self):
        checkpoint = Checkpoint.new(page_size=100)
        assert checkpoint.next_page_token is None
        assert checkpoint.page_size == 100
        assert checkpoint.run_id
        assert checkpoint.last_external_id is None

    def test_run_ids_are_unique(self):
        assert Checkpoint.new().run_id != Checkpoint.new().run_id

    def test_advance(self):
        checkpoint = Checkpoint.new()
        advanced = checkpoint.advance('tok-1', 'people/c5')

        assert advanced.next_page_token == 'tok-1'
        assert advanced.last_external_id == 'people/c5'
        assert advanced.run_id == checkpoint.run_id
        assert checkpoint.next_page_token is None

    def test_advance_empty_page_keeps_last_id(self):
        checkpoint = Checkpoint.new().advance('tok-1', 'people/c5')
        advanced = checkpoint.advance(None, None)
        assert advanced.next_page_token is None
        assert advanced.last_external_id == 'people/c5'

    def test_to_dict_is_tagged(self):
        data = Checkpoint.new().advance('tok', 'people/1').to_dict()
        assert data['version'] == CHECKPOINT_VERSION
        assert data['next_page_token'] == 'tok'
        assert data['last_external_id'] == 'people/1'
        assert data['page_size'] == DEFAULT_PAGE_SIZE


class TestCheckpointDecoding:
    """Tests for Checkpoint.from_dict."""

    def test_none_gives_fresh_checkpoint(self):
        checkpoint = Checkpoint.from_dict(None)
        assert checkpoint.next_page_token is None
        assert checkpoint.run_id

    def test_v1(self):
        checkpoint = Checkpoint.from_dict(
            {
                'version': 1,
                'next_page_token': 'abc',
                'page_size': 50,
                'run_id': 'run-1',
                'last_external_id': 'people/c9',
            }
        )
        assert checkpoint == Checkpoint('abc', 50, 'run-1', 'people/c9')

    def test_v1_preserves_stored_values(self):
        original = Checkpoint.new(page_size=75).advance('tok', 'people/c1')
        assert Checkpoint.from_dict(original.to_dict()) == original

    def test_legacy_camel_case(self):
        checkpoint = Checkpoint.from_dict(
            {
                'nextPageToken': 'legacy-token',
                'pageSize': 200,
                'runId': 'old-run',
                'lastPerson': 'people/c42',
            }
        )
        assert checkpoint.next_page_token == 'legacy-token'
        assert checkpoint.page_size == 200
        assert checkpoint.run_id == 'old-run'
        assert checkpoint.last_external_id == 'people/c42'

    def test_legacy_without_run_id_gets_one(self):
        checkpoint = Checkpoint.from_dict({'nextPageToken': 't'})
        assert checkpoint.run_id
        assert checkpoint.page_size == DEFAULT_PAGE_SIZE

    def test_empty_legacy_blob(self):
        checkpoint = Checkpoint.from_dict({})
        assert checkpoint.next_page_token is None

    def test_unknown_version(self):
        with pytest.raises(CheckpointError, match='Unsupported checkpoint version'):
            Checkpoint.from_dict({'version': 99})

    def test_not_a_dict(self):
        with pytest.raises(CheckpointError, match='must be an object'):
            Checkpoint.from_dict('nextPageToken=abc')
