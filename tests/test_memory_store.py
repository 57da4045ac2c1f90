import threading
from datetime import datetime, timedelta, timezone

import pytest

from lifesync.storage.errors import ConstraintViolation
from lifesync.storage.memory import MemoryStore
from lifesync.storage.models import calculate_level

T0 = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def tenant(store):
    return store.create_tenant("acme.com", "ACME Corporation")


def _user(store, tenant, email="jane@acme.com", **kwargs):
    return store.create_user(
        tenant_id=tenant.id, email=email, name="Jane Doe", password_hash="hash", **kwargs
    )


class TestTenantsAndUsers:
    def test_duplicate_domain_rejected(self, store, tenant):
        with pytest.raises(ConstraintViolation):
            store.create_tenant("acme.com", "Other")

    def test_domain_lookup_is_exact(self, store, tenant):
        assert store.get_tenant_by_domain("acme.com").id == tenant.id
        assert store.get_tenant_by_domain("ACME.com") is None

    def test_email_unique_per_tenant_only(self, store, tenant):
        _user(store, tenant)
        with pytest.raises(ConstraintViolation) as excinfo:
            _user(store, tenant)
        assert excinfo.value.field == "email"

        globex = store.create_tenant("globex.com", "Globex")
        other = _user(store, globex)
        assert other.tenant_id == globex.id

    def test_unknown_tenant_rejected(self, store):
        with pytest.raises(ConstraintViolation):
            store.create_user(
                tenant_id="missing", email="a@b.com", name="Ana", password_hash=None
            )

    def test_returned_records_are_copies(self, store, tenant):
        user = _user(store, tenant)
        user.name = "Mutated"
        assert store.get_user(user.id).name == "Jane Doe"

    def test_initial_xp_sets_level(self, store, tenant):
        user = _user(store, tenant, xp=350, role="MANAGER")
        assert (user.xp, user.level, user.role) == (350, 4, "MANAGER")

    def test_list_users_filters_and_pages(self, store, tenant):
        for i in range(5):
            _user(store, tenant, email=f"user{i}@acme.com")
        _user(store, tenant, email="boss@acme.com", role="MANAGER")

        assert store.count_users(tenant.id) == 6
        assert store.count_users(tenant.id, role="MANAGER") == 1
        first = store.list_users(tenant.id, offset=0, limit=4)
        second = store.list_users(tenant.id, offset=4, limit=4)
        assert len(first) == 4 and len(second) == 2
        assert not {u.id for u in first} & {u.id for u in second}


class TestRefreshFingerprint:
    def test_swap_requires_expected_value(self, store, tenant):
        user = _user(store, tenant)
        store.update_refresh_fingerprint(user.id, "first")

        assert store.swap_refresh_fingerprint(user.id, "stale", "second") is False
        assert store.get_user(user.id).refresh_token_hash == "first"

        assert store.swap_refresh_fingerprint(user.id, "first", "second") is True
        assert store.get_user(user.id).refresh_token_hash == "second"

    def test_swap_unknown_user(self, store):
        assert store.swap_refresh_fingerprint("missing", "a", "b") is False

    def test_only_one_concurrent_swap_wins(self, store, tenant):
        user = _user(store, tenant)
        store.update_refresh_fingerprint(user.id, "current")
        results = []

        def attempt(n):
            results.append(store.swap_refresh_fingerprint(user.id, "current", f"next-{n}"))

        threads = [threading.Thread(target=attempt, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1


class TestXp:
    @pytest.mark.parametrize("xp,level", [(0, 1), (99, 1), (100, 2), (250, 3), (1000, 11)])
    def test_calculate_level(self, xp, level):
        assert calculate_level(xp) == level

    def test_concurrent_awards_are_not_lost(self, store, tenant):
        user = _user(store, tenant)
        threads = [threading.Thread(target=store.add_xp, args=(user.id, 5)) for _ in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        stored = store.get_user(user.id)
        assert (stored.xp, stored.level) == (100, 2)

    def test_add_xp_unknown_user(self, store):
        assert store.add_xp("missing", 5) is None


class TestMoodLogs:
    def test_keyset_order_and_ties(self, store, tenant):
        user = _user(store, tenant)
        logs = [
            store.create_mood_log(user.id, mood=3, tags="", note=None, logged_at=T0),
            store.create_mood_log(user.id, mood=4, tags="", note=None, logged_at=T0),
            store.create_mood_log(
                user.id, mood=5, tags="", note=None, logged_at=T0 + timedelta(days=1)
            ),
        ]

        page = store.list_mood_logs(user.id, limit=10)
        expected = sorted(logs, key=lambda log: (log.logged_at, log.id), reverse=True)
        assert [log.id for log in page] == [log.id for log in expected]

        rest = store.list_mood_logs(
            user.id, limit=10, before=(expected[0].logged_at, expected[0].id)
        )
        assert [log.id for log in rest] == [log.id for log in expected[1:]]

    def test_days_are_distinct_and_descending(self, store, tenant):
        user = _user(store, tenant)
        for offset in (0, 0, 1, 3):
            store.create_mood_log(
                user.id, mood=3, tags="", note=None, logged_at=T0 - timedelta(days=offset)
            )

        days = store.list_mood_log_days(user.id, limit=10)
        assert days == [
            T0.date(),
            (T0 - timedelta(days=1)).date(),
            (T0 - timedelta(days=3)).date(),
        ]


class TestChallengesAndBadges:
    def test_available_challenges_scoped_to_tenant(self, store, tenant):
        globex = store.create_tenant("globex.com", "Globex")
        shared = store.create_challenge(
            title="Hidratação", description="Beba 2 litros", category="NUTRITION",
            xp_reward=15, tenant_id=None, is_global=True,
        )
        own = store.create_challenge(
            title="Caminhada", description="Caminhe 20 minutos", category="PHYSICAL",
            xp_reward=20, tenant_id=tenant.id,
        )
        store.create_challenge(
            title="Yoga", description="Aula de yoga", category="PHYSICAL",
            xp_reward=25, tenant_id=globex.id,
        )

        ids = {c.id for c in store.list_available_challenges(tenant.id)}
        assert ids == {shared.id, own.id}
        assert store.find_global_challenge("Hidratação").id == shared.id
        assert store.find_global_challenge("Caminhada") is None

    def test_badge_awarded_once(self, store, tenant):
        user = _user(store, tenant)
        store.create_badge(user.id, "Primeiro Passo", "Primeiro registro de humor")
        with pytest.raises(ConstraintViolation):
            store.create_badge(user.id, "Primeiro Passo", "Primeiro registro de humor")
        assert [b.name for b in store.list_badges(user.id)] == ["Primeiro Passo"]
