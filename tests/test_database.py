from dosetrack.core.database import (
    close_connections,
    get_connection,
    init_db,
    read_payload,
    write_payload,
)
from dosetrack.core.models import SubstanceRecord

LEGACY = {
    "id": 1717000000000,
    "name": "Xanax",
    "category": "Benzodiazepiner",
    "minTimeBetweenDoses": 8,
    "doses": [{"id": 1, "timestamp": "2024-06-01T08:00:00"}],
}


def test_empty_database_loads_nothing(repository):
    assert repository.load() == []


def test_save_and_load(repository):
    record = SubstanceRecord(name="Coffee", category="Stimulants", doses=[{"timestamp": "2024-06-10T08:00:00"}])
    repository.save([record])
    assert repository.load() == [record]


def test_legacy_payload_is_upgraded_and_written_back(repository):
    write_payload([LEGACY], db_path=repository.db_path)
    [record] = repository.load()
    assert record.id == "1717000000000"
    assert record.settings.min_time_between_doses_hours == 8

    [stored] = read_payload(db_path=repository.db_path)
    assert stored["settings"]["minTimeBetweenDosesHours"] == 8
    assert "minTimeBetweenDoses" not in stored


def test_payload_kept_when_records_are_rejected(repository):
    write_payload([LEGACY, "junk"], db_path=repository.db_path)
    assert len(repository.load()) == 1
    stored = read_payload(db_path=repository.db_path)
    assert stored[0] == LEGACY
    assert stored[1] == "junk"


def test_migration_adds_updated_at(tmp_path):
    path = tmp_path / "old.db"
    conn = get_connection(path)
    conn.execute("CREATE TABLE collections (key TEXT PRIMARY KEY, payload TEXT NOT NULL DEFAULT '[]')")
    conn.commit()

    init_db(path)
    columns = [row["name"] for row in conn.execute("PRAGMA table_info(collections)")]
    assert "updated_at" in columns
    close_connections()
