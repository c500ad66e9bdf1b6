import unittest

from application.account_service import AccountService
from domain.errors import ErrorCode
from domain.models import SECONDS_PER_DAY, Account, AccountType, Player
from fakes import InMemoryAccountGateway, RecordingScheduler


NOW = 1_700_000_000


class AccountServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.gateway = InMemoryAccountGateway()
        self.scheduler = RecordingScheduler()
        self.gateway.add_account(
            Account(
                id=1,
                name="hero-account",
                email="hero@example.com",
                password="secret",
                premium_remaining_days=10,
                premium_last_day=NOW + 10 * SECONDS_PER_DAY,
                account_type=AccountType.TUTOR,
            ),
            coins=100,
            players=[Player("Hero", 0), Player("Alt", 1699999999)],
        )
        self.gateway.add_account(Account(id=2, name="other", email="other@example.com"))

    def _service(self, **kwargs) -> AccountService:
        service = AccountService(clock=lambda: NOW, **kwargs)
        service.bind_persistence(self.gateway)
        service.bind_scheduler(self.scheduler)
        return service

    def test_load_without_identity_never_touches_gateway(self):
        service = self._service()
        self.assertIs(service.load(), ErrorCode.INVALID_ID)
        self.assertEqual(self.gateway.calls, [])

    def test_load_by_id_populates_fields_and_roster(self):
        service = self._service(account_id=1)
        self.assertIs(service.load(), ErrorCode.OK)

        self.assertEqual(service.get_id().value, 1)
        self.assertEqual(service.get_email().value, "hero@example.com")
        self.assertEqual(service.get_password().value, "secret")
        self.assertEqual(service.get_premium_remaining_days().value, 10)
        self.assertEqual(service.get_premium_last_day().value, NOW + 10 * SECONDS_PER_DAY)
        self.assertIs(service.get_account_type().value, AccountType.TUTOR)
        self.assertEqual(
            service.get_players().value,
            [Player("Hero", 0), Player("Alt", 1699999999)],
        )

    def test_load_by_name_or_email(self):
        by_name = self._service(name="hero-account")
        self.assertIs(by_name.load(), ErrorCode.OK)
        self.assertEqual(by_name.get_id().value, 1)

        by_email = self._service()
        self.assertIs(by_email.load_by_name("other@example.com"), ErrorCode.OK)
        self.assertEqual(by_email.get_id().value, 2)

    def test_id_takes_precedence_over_name(self):
        service = self._service(account_id=2, name="hero-account")
        self.assertIs(service.load(), ErrorCode.OK)
        self.assertEqual(service.get_email().value, "other@example.com")
        self.assertEqual(self.gateway.calls[0], "get_account_by_id")

    def test_missing_account_is_invalid_id(self):
        self.assertIs(self._service(account_id=999).load(), ErrorCode.INVALID_ID)
        self.assertIs(self._service(name="nobody").load(), ErrorCode.INVALID_ID)
        self.assertIs(self._service().load_by_id(0), ErrorCode.INVALID_ID)
        self.assertIs(self._service().load_by_name(""), ErrorCode.INVALID_ID)

    def test_loaded_instance_cannot_be_repointed(self):
        service = self._service(account_id=1)
        service.load()
        self.assertIs(service.load_by_id(2), ErrorCode.INVALID_ID)
        self.assertIs(service.load_by_name("other"), ErrorCode.INVALID_ID)
        self.assertEqual(service.get_id().value, 1)
        self.assertEqual(service.get_email().value, "hero@example.com")
        # Reloading the same identity is fine.
        self.assertIs(service.load_by_name("hero-account"), ErrorCode.OK)

    def test_operations_require_both_collaborators(self):
        service = AccountService(account_id=1)
        self.assertIs(service.load(), ErrorCode.NOT_INITIALIZED)
        self.assertIs(service.bind_persistence(self.gateway), ErrorCode.OK)
        self.assertIs(service.load(), ErrorCode.NOT_INITIALIZED)
        self.assertIs(service.save(), ErrorCode.NOT_INITIALIZED)
        self.assertIs(service.get_coins().error, ErrorCode.NOT_INITIALIZED)
        self.assertIs(service.bind_scheduler(self.scheduler), ErrorCode.OK)
        self.assertIs(service.load(), ErrorCode.OK)

    def test_binding_none_is_null_reference(self):
        service = AccountService()
        self.assertIs(service.bind_persistence(None), ErrorCode.NULL_REFERENCE)
        self.assertIs(service.bind_scheduler(None), ErrorCode.NULL_REFERENCE)

    def test_storage_failure_during_load_keeps_prior_state(self):
        service = self._service(account_id=1)
        self.gateway.fail_on.add("get_players")
        self.assertIs(service.load(), ErrorCode.DATABASE_FAILURE)
        self.assertEqual(service.get_email().value, "")
        self.assertIs(service.get_players().error, ErrorCode.PLAYERS_LOAD_FAILURE)

        self.gateway.fail_on = {"get_account_by_id"}
        self.assertIs(service.load(), ErrorCode.DATABASE_FAILURE)

    def test_save_persists_changed_fields(self):
        service = self._service(account_id=1)
        service.load()
        self.assertIs(service.set_email("new@example.com"), ErrorCode.OK)
        self.assertIs(service.set_account_type(AccountType.GAME_MASTER), ErrorCode.OK)
        self.assertIs(service.save(), ErrorCode.OK)

        fresh = self._service(account_id=1)
        self.assertIs(fresh.load(), ErrorCode.OK)
        self.assertEqual(fresh.get_email().value, "new@example.com")
        self.assertIs(fresh.get_account_type().value, AccountType.GAME_MASTER)
        self.assertEqual(fresh.get_password().value, "secret")
        self.assertEqual(self.gateway.coins[1], 100)

    def test_save_without_id_is_not_initialized(self):
        self.assertIs(self._service(name="hero-account").save(), ErrorCode.NOT_INITIALIZED)

    def test_save_failure_is_database_failure(self):
        service = self._service(account_id=1)
        service.load()
        self.gateway.fail_on.add("update_account")
        self.assertIs(service.save(), ErrorCode.DATABASE_FAILURE)

    def test_save_of_vanished_account_is_database_failure(self):
        service = self._service(account_id=1)
        service.load()
        del self.gateway.accounts[1]
        service.set_email("new@example.com")
        self.assertIs(service.save(), ErrorCode.DATABASE_FAILURE)

    def test_save_deferred_uses_snapshot(self):
        service = self._service(account_id=1)
        service.load()
        service.set_email("queued@example.com")
        self.assertIs(service.save_deferred(), ErrorCode.OK)
        service.set_email("later@example.com")

        self.assertEqual(self.gateway.accounts[1].email, "hero@example.com")
        self.scheduler.run_all()
        self.assertEqual(self.gateway.accounts[1].email, "queued@example.com")

    def test_field_validation(self):
        service = self._service(account_id=1)
        self.assertIs(service.set_email(""), ErrorCode.INVALID_EMAIL)
        self.assertIs(service.set_password(""), ErrorCode.INVALID_PASSWORD)
        self.assertIs(service.set_account_type(6), ErrorCode.INVALID_ACCOUNT_TYPE)
        self.assertIs(service.set_account_type(0), ErrorCode.INVALID_ACCOUNT_TYPE)
        self.assertIs(service.set_account_type(5), ErrorCode.OK)
        self.assertIs(service.get_account_type().value, AccountType.GOD)
        self.assertIs(service.set_premium_remaining_days(-1), ErrorCode.INVALID_LAST_DAY)

    def test_premium_last_day_rule(self):
        service = self._service(account_id=1)
        self.assertIs(service.set_premium_last_day(-1), ErrorCode.INVALID_LAST_DAY)
        # No days remaining: any non-negative timestamp is accepted.
        self.assertIs(service.set_premium_last_day(0), ErrorCode.OK)

        self.assertIs(service.set_premium(5, NOW + 5 * SECONDS_PER_DAY), ErrorCode.OK)
        too_old = NOW - 5 * SECONDS_PER_DAY - 1
        self.assertIs(service.set_premium_last_day(too_old), ErrorCode.INVALID_LAST_DAY)
        self.assertIs(service.set_premium_last_day(NOW + SECONDS_PER_DAY), ErrorCode.OK)

    def test_remaining_days_are_checked_against_current_last_day(self):
        service = self._service(account_id=1)
        last_day = NOW - 100 * SECONDS_PER_DAY
        self.assertIs(service.set_premium_last_day(last_day), ErrorCode.OK)

        self.assertIs(service.set_premium_remaining_days(5), ErrorCode.INVALID_LAST_DAY)
        self.assertEqual(service.get_premium_remaining_days().value, 0)
        self.assertEqual(service.get_premium_last_day().value, last_day)

        # A window long enough to reach the stored last day is consistent.
        self.assertIs(service.set_premium_remaining_days(100), ErrorCode.OK)
        self.assertIs(service.set_premium_remaining_days(0), ErrorCode.OK)

    def test_set_premium_validates_the_pair(self):
        service = self._service(account_id=1)
        self.assertIs(service.set_premium(3, NOW - 4 * SECONDS_PER_DAY), ErrorCode.INVALID_LAST_DAY)
        self.assertEqual(service.get_premium_remaining_days().value, 0)
        self.assertIs(service.set_premium(3, NOW + 3 * SECONDS_PER_DAY), ErrorCode.OK)
        self.assertEqual(service.get_premium_remaining_days().value, 3)

    def test_get_player(self):
        service = self._service(account_id=1)
        self.assertIs(service.get_player("Hero").error, ErrorCode.PLAYERS_LOAD_FAILURE)
        service.load()
        self.assertEqual(service.get_player("Hero").value, Player("Hero", 0))
        self.assertIs(service.get_player("Ghost").error, ErrorCode.PLAYER_NOT_FOUND)
        self.assertIs(service.get_player("hero").error, ErrorCode.PLAYER_NOT_FOUND)

    def test_roster_is_a_snapshot(self):
        service = self._service(account_id=1)
        service.load()
        self.gateway.players[1].append(Player("Newcomer", 0))
        players = service.get_players().value
        self.assertEqual([p.name for p in players], ["Hero", "Alt"])
        players[0].name = "Mutated"
        self.assertEqual(service.get_player("Hero").value, Player("Hero", 0))

    def test_coin_operations_write_through(self):
        service = self._service(account_id=1)
        service.load()
        self.assertIs(service.add_coins(50, "gift"), ErrorCode.OK)
        self.assertEqual(self.gateway.coins[1], 150)
        self.assertIs(service.remove_coins(500), ErrorCode.INSUFFICIENT_COINS)
        self.assertEqual(service.get_coins().value, 150)
        history = service.get_coin_history().value
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0].timestamp, NOW)
        self.assertEqual(self.scheduler.jobs, [])

    def test_get_id_before_load(self):
        self.assertIs(AccountService().get_id().error, ErrorCode.NOT_INITIALIZED)
        self.assertEqual(AccountService(account_id=9).get_id().value, 9)
        self.assertIs(AccountService(account_id=-1).get_id().error, ErrorCode.NOT_INITIALIZED)


if __name__ == "__main__":
    unittest.main()
