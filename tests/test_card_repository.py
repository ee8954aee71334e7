"""
Tests for CardRepository: CRUD, atomicity and the session log.
"""

import copy
import time

import pytest

from phrase_cards.errors import InputValidationError, StoreUnavailable, TransactionAborted
from phrase_cards.models import PracticeMode, Session, max_tempo, new_card, new_session
from phrase_cards.store import CardRepository


def _fail_inserts_into(table):
    """Install a trigger that aborts every insert into `table`."""
    def install(conn):
        conn.execute(
            f"CREATE TRIGGER fail_{table} BEFORE INSERT ON {table} "
            f"BEGIN SELECT RAISE(ABORT, 'simulated commit failure'); END"
        )
    return install


def _fail_deletes_from(table):
    def install(conn):
        conn.execute(
            f"CREATE TRIGGER fail_delete_{table} BEFORE DELETE ON {table} "
            f"BEGIN SELECT RAISE(ABORT, 'simulated commit failure'); END"
        )
    return install


def _session_at(card, date, tempos=None):
    return Session(
        id=f"{card.id}-{date}",
        card_id=card.id,
        date=date,
        mode=PracticeMode.FREE,
        tempos_achieved=tempos or []
    )


class TestSaveAndGet:
    """Test saving and reading cards."""

    @pytest.mark.asyncio
    async def test_round_trip(self, repository, sample_card, wav_payload):
        """Test that a saved card and payload read back equal."""
        before = time.time() * 1000
        expected = copy.deepcopy(sample_card)

        await repository.save(sample_card, wav_payload)

        loaded = await repository.get(sample_card.id)
        assert loaded is not None
        assert loaded.updated_at >= before
        assert loaded.audio_blob_id == sample_card.id

        expected.updated_at = loaded.updated_at
        expected.audio_blob_id = sample_card.id
        assert loaded == expected
        assert await repository.get_payload(sample_card.id) == wav_payload

    @pytest.mark.asyncio
    async def test_save_updates_in_memory_card(self, repository, sample_card, wav_payload):
        saved = await repository.save(sample_card, wav_payload)
        assert saved is sample_card
        assert sample_card.has_payload
        assert await repository.get(sample_card.id) == sample_card

    @pytest.mark.asyncio
    async def test_metadata_edit_keeps_payload(self, repository, sample_card, wav_payload):
        """Test that saving without a payload keeps the stored audio."""
        await repository.save(sample_card, wav_payload)
        first_update = sample_card.updated_at

        sample_card.title = "Renamed"
        sample_card.tags = ["edited"]
        await repository.save(sample_card)

        loaded = await repository.get(sample_card.id)
        assert loaded.title == "Renamed"
        assert loaded.tags == ["edited"]
        assert loaded.updated_at >= first_update
        assert await repository.get_payload(sample_card.id) == wav_payload

    @pytest.mark.asyncio
    async def test_new_payload_replaces_old(self, repository, sample_card):
        await repository.save(sample_card, b"first clip")
        await repository.save(sample_card, b"second clip")
        assert await repository.get_payload(sample_card.id) == b"second clip"

    @pytest.mark.asyncio
    async def test_first_save_requires_payload(self, repository, sample_card):
        """Test that a card cannot be created without audio."""
        with pytest.raises(InputValidationError):
            await repository.save(sample_card)
        assert await repository.get(sample_card.id) is None

    @pytest.mark.asyncio
    async def test_empty_payload_rejected(self, repository, sample_card):
        with pytest.raises(InputValidationError):
            await repository.save(sample_card, b"")

    @pytest.mark.asyncio
    async def test_missing_ids_are_absent(self, repository):
        assert await repository.get("nope") is None
        assert await repository.get_payload("nope") is None

    @pytest.mark.asyncio
    async def test_list_all_and_count(self, repository, wav_payload):
        cards = [new_card(f"card {i}", 0, 1) for i in range(3)]
        for card in cards:
            await repository.save(card, wav_payload)

        listed = await repository.list_all()
        assert sorted(c.id for c in listed) == sorted(c.id for c in cards)
        assert await repository.count() == 3

    @pytest.mark.asyncio
    async def test_list_all_empty(self, repository):
        assert await repository.list_all() == []

    @pytest.mark.parametrize("record", [
        "{not json",
        '{"id": "broken"}',
        '{"id": "broken", "title": "", "createdAt": 1, "updatedAt": 1, '
        '"trim": {"startSec": 0, "endSec": 1}, "mastery": {"chromatic": "done"}}',
    ])
    @pytest.mark.asyncio
    async def test_damaged_record_is_store_error(self, repository, store_handle, sample_card, wav_payload, record):
        """Test that one unreadable record surfaces as a typed store error."""
        await repository.save(sample_card, wav_payload)
        await store_handle.run(lambda c: c.execute(
            "INSERT INTO cards (id, record) VALUES ('broken', ?)", (record,)
        ))

        with pytest.raises(StoreUnavailable) as exc_info:
            await repository.list_all()
        assert exc_info.value.processing_error.error_code == "STORE_002"

        with pytest.raises(StoreUnavailable):
            await repository.get('broken')
        assert await repository.get(sample_card.id) == sample_card


class TestAtomicity:
    """Test that card and payload writes commit together or not at all."""

    @pytest.mark.asyncio
    async def test_failed_card_write_leaves_no_payload(self, repository, store_handle, sample_card, wav_payload):
        """Test that a failure after the payload write leaves nothing behind."""
        await store_handle.run(_fail_inserts_into('cards'))

        with pytest.raises(TransactionAborted) as exc_info:
            await repository.save(sample_card, wav_payload)

        assert exc_info.value.processing_error.error_code == "TX_003"
        assert await repository.get(sample_card.id) is None
        assert await repository.get_payload(sample_card.id) is None

    @pytest.mark.asyncio
    async def test_failed_payload_write_leaves_no_card(self, repository, store_handle, sample_card, wav_payload):
        await store_handle.run(_fail_inserts_into('blobs'))

        with pytest.raises(TransactionAborted):
            await repository.save(sample_card, wav_payload)

        assert await repository.get(sample_card.id) is None
        assert await repository.get_payload(sample_card.id) is None

    @pytest.mark.asyncio
    async def test_failed_save_restores_in_memory_card(self, repository, store_handle, sample_card, wav_payload):
        """Test that the in-memory card still mirrors the stored (absent) state."""
        original_updated = sample_card.updated_at
        await store_handle.run(_fail_inserts_into('cards'))

        with pytest.raises(TransactionAborted):
            await repository.save(sample_card, wav_payload)

        assert sample_card.updated_at == original_updated
        assert sample_card.audio_blob_id == ""

    @pytest.mark.asyncio
    async def test_failed_update_keeps_previous_version(self, repository, store_handle, sample_card):
        """Test that a failed replacement leaves the old card and payload intact."""
        await repository.save(sample_card, b"old audio")
        stored = await repository.get(sample_card.id)

        def fail_updates(conn):
            conn.execute(
                "CREATE TRIGGER fail_update BEFORE UPDATE ON cards "
                "BEGIN SELECT RAISE(ABORT, 'simulated commit failure'); END"
            )

        await store_handle.run(fail_updates)
        sample_card.title = "never stored"

        with pytest.raises(TransactionAborted):
            await repository.save(sample_card, b"new audio")

        assert await repository.get(sample_card.id) == stored
        assert await repository.get_payload(sample_card.id) == b"old audio"

    @pytest.mark.asyncio
    async def test_save_after_delete_does_not_resurrect(self, repository, sample_card, wav_payload):
        """Test that a stale copy cannot recreate a card without its payload."""
        await repository.save(sample_card, wav_payload)
        stale = copy.deepcopy(sample_card)
        await repository.delete(sample_card.id)

        with pytest.raises(TransactionAborted):
            await repository.save(stale)

        assert await repository.get(sample_card.id) is None


class TestDelete:
    """Test card deletion."""

    @pytest.mark.asyncio
    async def test_delete_removes_card_and_payload(self, repository, sample_card, wav_payload):
        await repository.save(sample_card, wav_payload)

        await repository.delete(sample_card.id)

        assert await repository.get(sample_card.id) is None
        assert await repository.get_payload(sample_card.id) is None

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, repository, sample_card, wav_payload):
        await repository.save(sample_card, wav_payload)
        await repository.delete(sample_card.id)
        await repository.delete(sample_card.id)
        await repository.delete("never-existed")
        assert await repository.count() == 0

    @pytest.mark.asyncio
    async def test_failed_delete_removes_nothing(self, repository, store_handle, sample_card, wav_payload):
        """Test that a delete failing on the payload table keeps the card too."""
        await repository.save(sample_card, wav_payload)
        await store_handle.run(_fail_deletes_from('blobs'))

        with pytest.raises(TransactionAborted):
            await repository.delete(sample_card.id)

        assert await repository.get(sample_card.id) is not None
        assert await repository.get_payload(sample_card.id) == wav_payload

    @pytest.mark.asyncio
    async def test_delete_leaves_other_cards(self, repository, wav_payload):
        keep = new_card("keep", 0, 1)
        drop = new_card("drop", 0, 1)
        await repository.save(keep, wav_payload)
        await repository.save(drop, b"other")

        await repository.delete(drop.id)

        assert await repository.get(keep.id) == keep
        assert await repository.get_payload(keep.id) == wav_payload


class TestSessions:
    """Test the embedded session log."""

    @pytest.mark.asyncio
    async def test_append_session_persists(self, repository, sample_card, wav_payload):
        await repository.save(sample_card, wav_payload)
        session = new_session(sample_card, PracticeMode.CHROMATIC, [100, 120], 10, "steady")

        await repository.append_session(sample_card, session)

        loaded = await repository.get(sample_card.id)
        assert loaded.sessions == [session]

    @pytest.mark.asyncio
    async def test_append_rejects_foreign_session(self, repository, sample_card, wav_payload):
        await repository.save(sample_card, wav_payload)
        other = new_card("other", 0, 1)

        with pytest.raises(InputValidationError):
            await repository.append_session(sample_card, new_session(other, PracticeMode.FREE))
        assert sample_card.sessions == []

    @pytest.mark.asyncio
    async def test_failed_append_is_undone(self, repository, store_handle, sample_card, wav_payload):
        await repository.save(sample_card, wav_payload)
        await store_handle.run(lambda c: c.execute(
            "CREATE TRIGGER fail_update BEFORE UPDATE ON cards "
            "BEGIN SELECT RAISE(ABORT, 'simulated commit failure'); END"
        ))

        with pytest.raises(TransactionAborted):
            await repository.append_session(sample_card, new_session(sample_card, PracticeMode.FREE, [90]))

        assert sample_card.sessions == []
        assert (await repository.get(sample_card.id)).sessions == []

    @pytest.mark.asyncio
    async def test_last_write_wins(self, repository, sample_card, wav_payload):
        """Test that two in-memory copies are not merged; the later save wins."""
        await repository.save(sample_card, wav_payload)
        copy_a = await repository.get(sample_card.id)
        copy_b = await repository.get(sample_card.id)

        session_a = new_session(copy_a, PracticeMode.FREE, [100])
        session_b = new_session(copy_b, PracticeMode.CHROMATIC, [80])
        await repository.append_session(copy_a, session_a)
        await repository.append_session(copy_b, session_b)

        loaded = await repository.get(sample_card.id)
        assert loaded.sessions == [session_b]

    @pytest.mark.asyncio
    async def test_history_cap_archives_oldest(self, repository, sample_card, wav_payload):
        """Test that sessions beyond the cap move to the archive, oldest first."""
        await repository.save(sample_card, wav_payload)
        sessions = [_session_at(sample_card, date, [60 + date]) for date in (1, 2, 3, 4, 5)]
        for session in sessions:
            await repository.append_session(sample_card, session)

        loaded = await repository.get(sample_card.id)
        assert loaded.sessions == sessions[2:]
        assert sample_card.sessions == sessions[2:]

        archived = await repository.get_archived_sessions(sample_card.id)
        assert archived == sessions[:2]

    @pytest.mark.asyncio
    async def test_max_tempo_survives_archiving(self, repository, sample_card, wav_payload):
        """Test that archiving the fastest session does not lower the card's max tempo."""
        await repository.save(sample_card, wav_payload)
        for date, tempo in enumerate([200, 100, 110, 120], start=1):
            await repository.append_session(sample_card, _session_at(sample_card, date, [tempo]))

        loaded = await repository.get(sample_card.id)
        assert [s.tempos_achieved for s in loaded.sessions] == [[100], [110], [120]]
        assert loaded.archived_max_tempo == 200
        assert max_tempo(loaded) == 200

    @pytest.mark.asyncio
    async def test_failed_archive_restores_archived_max(self, repository, store_handle, sample_card, wav_payload):
        await repository.save(sample_card, wav_payload)
        for date in (1, 2, 3):
            await repository.append_session(sample_card, _session_at(sample_card, date, [150 + date]))
        await store_handle.run(_fail_inserts_into('session_archive'))

        with pytest.raises(TransactionAborted):
            await repository.append_session(sample_card, _session_at(sample_card, 4, [90]))

        assert sample_card.archived_max_tempo == 0
        assert len(sample_card.sessions) == 3
        assert (await repository.get(sample_card.id)).archived_max_tempo == 0

    @pytest.mark.asyncio
    async def test_delete_removes_archive(self, repository, sample_card, wav_payload):
        await repository.save(sample_card, wav_payload)
        for date in range(1, 6):
            await repository.append_session(sample_card, _session_at(sample_card, date))

        await repository.delete(sample_card.id)

        assert await repository.get_archived_sessions(sample_card.id) == []

    @pytest.mark.asyncio
    async def test_cap_disabled(self, store_handle, sample_card, wav_payload):
        repository = CardRepository(store_handle, session_limit=0)
        assert repository.session_limit is None

        await repository.save(sample_card, wav_payload)
        for date in range(1, 8):
            await repository.append_session(sample_card, _session_at(sample_card, date))

        assert len((await repository.get(sample_card.id)).sessions) == 7
        assert await repository.get_archived_sessions(sample_card.id) == []
