import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from cityboundary.core.exceptions import BoundaryNotFound, InvariantViolation, MalformedGeometry
from cityboundary.models import Base
from cityboundary.models.boundary import Boundary
from cityboundary.schemas.boundary import BoundaryQuery
from cityboundary.services.boundary.selection import CITY_LOCK_STRIPES, ResolutionState, SelectionManager
from cityboundary.services.boundary.store import BoundaryStore, format_decimal
from conftest import StubProvider, make_candidate, square

CITY = "city-1"
QUERY = BoundaryQuery(city_name="Springfield", country="United States")


def candidates():
    return [
        make_candidate("relation/1", area=120.5, geometry=square(10, 20)),
        make_candidate("way/2", admin_level="10", area=15.0, geometry=square(10.2, 20.2, 0.3)),
        make_candidate("relation/3", admin_level="6", area=900.0, geometry=square(9, 19, 3)),
    ]


@pytest.fixture
def stub_provider():
    return StubProvider(candidates())


@pytest.fixture
def manager(db_session, stub_provider):
    return SelectionManager(db=db_session, provider=stub_provider, actor="tester")


def selected_ids(db_session, city_id=CITY):
    return [
        b.osm_id
        for b in db_session.query(Boundary).filter(Boundary.city_id == city_id, Boundary.is_selected.is_(True))
    ]


def test_new_city_is_unresolved(manager):
    assert manager.get_state(CITY) == ResolutionState.UNRESOLVED
    assert manager.get_selected(CITY) is None


def test_search_ranks_without_persisting(manager, db_session):
    result = manager.search(CITY, QUERY)

    assert result.state == ResolutionState.CANDIDATES_LOADED
    assert result.candidates[0].osm_id == "relation/1"
    assert result.suggested.osm_id == "relation/1"
    assert result.error is None
    assert not result.retryable
    assert db_session.query(Boundary).count() == 0


def test_search_applies_limit(manager):
    result = manager.search(CITY, QUERY.model_copy(update={"limit": 2}))
    assert len(result.candidates) == 2


def test_provider_error_gives_empty_candidates(db_session):
    manager = SelectionManager(db=db_session, provider=StubProvider(error="Overpass request timed out"))
    result = manager.search(CITY, QUERY)

    assert result.candidates == []
    assert result.suggested is None
    assert result.error == "Overpass request timed out"
    assert result.retryable
    assert result.state == ResolutionState.UNRESOLVED


def test_search_requests_are_distinct(manager):
    assert manager.search(CITY, QUERY).request_id != manager.search(CITY, QUERY).request_id


def test_select_candidate_creates_single_selection(manager, db_session):
    result = manager.search(CITY, QUERY)
    boundary = manager.select_candidate(CITY, result.suggested)

    assert boundary.is_selected
    assert boundary.osm_id == "relation/1"
    assert boundary.area == "120.500"
    assert selected_ids(db_session) == ["relation/1"]
    assert manager.get_state(CITY) == ResolutionState.SELECTED


def test_reselect_demotes_previous(manager, db_session):
    result = manager.search(CITY, QUERY, persist=True)
    by_id = {c.osm_id: c for c in result.candidates}

    manager.select_candidate(CITY, by_id["relation/1"])
    manager.select_candidate(CITY, by_id["way/2"])

    assert selected_ids(db_session) == ["way/2"]
    assert db_session.query(Boundary).filter(Boundary.city_id == CITY).count() == 3


def test_reselecting_same_candidate_does_not_duplicate(manager, db_session):
    candidate = manager.search(CITY, QUERY).suggested
    first = manager.select_candidate(CITY, candidate)
    second = manager.select_candidate(CITY, candidate)

    assert first.id == second.id
    assert db_session.query(Boundary).count() == 1


def test_selection_is_per_city(manager, db_session):
    candidate = manager.search(CITY, QUERY).suggested
    manager.select_candidate(CITY, candidate)
    manager.select_candidate("city-2", candidate)

    assert selected_ids(db_session, CITY) == ["relation/1"]
    assert selected_ids(db_session, "city-2") == ["relation/1"]


def test_select_boundary_by_id(manager):
    rows = manager.store_candidates(CITY, manager.search(CITY, QUERY).candidates)
    target = next(row for row in rows if row.osm_id == "relation/3")

    selected = manager.select_boundary(CITY, target.id)
    assert selected.id == target.id
    assert manager.get_selected(CITY).osm_id == "relation/3"


def test_select_boundary_of_other_city_is_not_found(manager):
    rows = manager.store_candidates("city-2", candidates())
    with pytest.raises(BoundaryNotFound):
        manager.select_boundary(CITY, rows[0].id)


def test_failed_selection_keeps_previous(manager, db_session, monkeypatch):
    rows = manager.store_candidates(CITY, manager.search(CITY, QUERY).candidates)
    manager.select_boundary(CITY, rows[0].id)
    other_id = rows[1].id

    def broken_mark(city_id, boundary_id):
        raise RuntimeError("connection lost")

    monkeypatch.setattr(manager.store, "mark_selected", broken_mark)
    with pytest.raises(RuntimeError):
        manager.select_boundary(CITY, other_id)

    assert selected_ids(db_session) == [rows[0].osm_id]


def test_candidate_without_geometry_is_rejected(manager, db_session):
    manager.select_candidate(CITY, manager.search(CITY, QUERY).suggested)
    broken = make_candidate("relation/9").model_copy(update={"geometry": None})

    with pytest.raises(MalformedGeometry):
        manager.select_candidate(CITY, broken)
    assert selected_ids(db_session) == ["relation/1"]


def test_search_never_changes_selection(manager, stub_provider):
    manager.select_candidate(CITY, manager.search(CITY, QUERY).suggested)
    stub_provider.candidates = [make_candidate("relation/77", name="Springfield")]

    result = manager.search(CITY, QUERY, persist=True)
    assert result.state == ResolutionState.SELECTED
    assert result.selected.osm_id == "relation/1"
    assert manager.get_selected(CITY).osm_id == "relation/1"


def test_failed_search_keeps_selection(manager, stub_provider):
    manager.select_candidate(CITY, manager.search(CITY, QUERY).suggested)
    stub_provider.error = "Overpass request failed"

    result = manager.search(CITY, QUERY)
    assert result.candidates == []
    assert result.state == ResolutionState.SELECTED
    assert result.selected.osm_id == "relation/1"


def test_repeated_persist_does_not_duplicate_rows(manager, db_session):
    manager.search(CITY, QUERY, persist=True)
    manager.search(CITY, QUERY, persist=True)

    assert db_session.query(Boundary).filter(Boundary.city_id == CITY).count() == 3
    assert selected_ids(db_session) == []
    assert manager.get_state(CITY) == ResolutionState.CANDIDATES_LOADED


def test_stored_geometry_is_immutable(manager):
    boundary = manager.select_candidate(CITY, manager.search(CITY, QUERY).suggested)
    with pytest.raises(InvariantViolation):
        boundary.geometry = square(0, 0)


def test_store_refuses_second_selected_row(db_session):
    store = BoundaryStore(db_session)
    store.add(store.promote(CITY, make_candidate("relation/1"), is_selected=True))

    with pytest.raises(InvariantViolation):
        store.add(store.promote(CITY, make_candidate("relation/2"), is_selected=True))


def test_delete_selected_leaves_city_unselected(manager):
    rows = manager.store_candidates(CITY, manager.search(CITY, QUERY).candidates)
    manager.select_boundary(CITY, rows[0].id)

    assert manager.delete_boundary(CITY, rows[0].id) == rows[0].osm_id
    assert manager.get_selected(CITY) is None
    assert manager.get_state(CITY) == ResolutionState.CANDIDATES_LOADED


def test_delete_unknown_boundary(manager):
    rows = manager.store_candidates("city-2", candidates())
    with pytest.raises(BoundaryNotFound):
        manager.delete_boundary(CITY, rows[0].id)


def test_clear_city(manager, db_session):
    manager.search(CITY, QUERY, persist=True)
    manager.store_candidates("city-2", candidates())

    assert manager.clear_city(CITY) == 3
    assert manager.get_state(CITY) == ResolutionState.UNRESOLVED
    assert db_session.query(Boundary).filter(Boundary.city_id == "city-2").count() == 3


def test_select_cached_candidate(db_session, stub_provider, candidate_cache):
    manager = SelectionManager(db=db_session, provider=stub_provider, cache=candidate_cache)
    manager.search(CITY, QUERY)
    assert manager.get_state(CITY) == ResolutionState.CANDIDATES_LOADED

    boundary = manager.select_cached(CITY, "way", "way/2")
    assert boundary.osm_id == "way/2"
    assert boundary.is_selected

    with pytest.raises(BoundaryNotFound):
        manager.select_cached(CITY, "relation", "relation/404")


def test_clear_city_drops_cached_candidates(db_session, stub_provider, candidate_cache):
    manager = SelectionManager(db=db_session, provider=stub_provider, cache=candidate_cache)
    manager.search(CITY, QUERY)
    manager.clear_city(CITY)

    assert manager.get_cached_candidates(CITY) == []


def test_empty_search_drops_cached_candidates(db_session, stub_provider, candidate_cache):
    manager = SelectionManager(db=db_session, provider=stub_provider, cache=candidate_cache)
    manager.search(CITY, QUERY)
    stub_provider.candidates = []

    result = manager.search(CITY, QUERY)
    assert result.state == ResolutionState.UNRESOLVED
    assert manager.get_cached_candidates(CITY) == []


@pytest.mark.parametrize(
    "value, places, expected",
    [(306.45, 3, "306.450"), (0.93333, 4, "0.9333"), (None, 3, None), (float("inf"), 3, None)],
)
def test_format_decimal(value, places, expected):
    assert format_decimal(value, places) == expected


def test_search_state_matches_stored_candidates(manager, stub_provider):
    manager.store_candidates(CITY, candidates())
    stub_provider.candidates = []

    result = manager.search(CITY, QUERY)
    assert result.candidates == []
    assert result.state == ResolutionState.CANDIDATES_LOADED == manager.get_state(CITY)

    stub_provider.error = "Overpass request failed"
    assert manager.search(CITY, QUERY).state == ResolutionState.CANDIDATES_LOADED


def test_city_locks_are_bounded(db_session):
    manager = SelectionManager(db=db_session, provider=StubProvider())
    for i in range(500):
        manager.store_candidates(f"city-{i}", [])

    assert len(SelectionManager._city_locks) == CITY_LOCK_STRIPES
    assert SelectionManager._city_lock("city-7") is SelectionManager._city_lock("city-7")


@pytest.fixture
def file_session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'boundaries.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


def test_concurrent_selections_keep_exactly_one(file_session_factory):
    setup = file_session_factory()
    try:
        manager = SelectionManager(db=setup, provider=StubProvider())
        rows = manager.store_candidates(CITY, candidates())
        stored = [(row.id, row.osm_id) for row in rows]
        manager.select_boundary(CITY, stored[0][0])
    finally:
        setup.close()

    fresh = [make_candidate(f"relation/{100 + i}", geometry=square(10, 20)) for i in range(4)]
    jobs = [lambda m, boundary_id=boundary_id: m.select_boundary(CITY, boundary_id) for boundary_id, _ in stored]
    jobs += [lambda m, candidate=candidate: m.select_candidate(CITY, candidate) for candidate in fresh]

    barrier = threading.Barrier(len(jobs), timeout=30)
    errors = []
    observed = []
    done = threading.Event()

    def select(job):
        db = file_session_factory()
        try:
            manager = SelectionManager(db=db, provider=StubProvider())
            barrier.wait()
            job(manager)
        except Exception as e:
            errors.append(e)
        finally:
            db.close()

    def watch():
        db = file_session_factory()
        try:
            while True:
                observed.append(BoundaryStore(db).count_selected(CITY))
                db.rollback()
                if done.is_set():
                    break
        finally:
            db.close()

    watcher = threading.Thread(target=watch)
    watcher.start()
    threads = [threading.Thread(target=select, args=(job,)) for job in jobs]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    done.set()
    watcher.join()

    assert all(isinstance(e, InvariantViolation) for e in errors), errors
    assert observed and set(observed) == {1}

    check = file_session_factory()
    try:
        store = BoundaryStore(check)
        assert store.count_selected(CITY) == 1
        expected = {osm_id for _, osm_id in stored} | {c.osm_id for c in fresh}
        assert store.get_selected(CITY).osm_id in expected
    finally:
        check.close()
