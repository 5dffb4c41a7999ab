"""Unit tests for store purchases, award presets and default categories"""

import uuid
import pytest

from bizcoin_ledger.domain.catalog import DEFAULT_CATEGORIES, DEFAULT_PRESETS, PRESET_CATEGORY, STORE_CATEGORY
from bizcoin_ledger.domain.exceptions import InsufficientBalance, NotFoundError, ValidationError
from bizcoin_ledger.domain.models import TransactionType
from bizcoin_ledger.services.ledger import TokenLedgerService

CLASSROOM = "classroom-a"
STUDENT = "student-1"
TEACHER = "teacher-1"


class TestPurchase:
    def test_purchase_debits_wallet_and_records_purchase(self, service: TokenLedgerService):
        item = service.create_store_item(CLASSROOM, "Homework pass", cost=30, inventory=2)
        service.award(STUDENT, CLASSROOM, 50, "homework", "HW")

        receipt = service.purchase_item(STUDENT, item.id)

        assert receipt.tokens_spent == 30
        assert receipt.remaining_inventory == 1
        assert receipt.transaction.amount == -30
        assert receipt.transaction.type == TransactionType.SPENT
        assert receipt.transaction.category == STORE_CATEGORY
        assert receipt.transaction.reference_id == str(item.id)
        assert service.get_balance(STUDENT, CLASSROOM).current_balance == 20

    def test_unlimited_inventory_is_not_decremented(self, service: TokenLedgerService):
        item = service.create_store_item(CLASSROOM, "Sticker", cost=5)
        service.award(STUDENT, CLASSROOM, 20, "homework", "HW")

        service.purchase_item(STUDENT, item.id)
        receipt = service.purchase_item(STUDENT, item.id)

        assert receipt.remaining_inventory == -1

    def test_insufficient_balance_leaves_inventory_untouched(self, service: TokenLedgerService):
        item = service.create_store_item(CLASSROOM, "Headphones", cost=100, inventory=1)
        service.award(STUDENT, CLASSROOM, 50, "homework", "HW")

        with pytest.raises(InsufficientBalance):
            service.purchase_item(STUDENT, item.id)

        assert service.list_store_items(CLASSROOM)[0].inventory == 1
        assert service.get_balance(STUDENT, CLASSROOM).current_balance == 50

    def test_sold_out_item_cannot_be_bought(self, service: TokenLedgerService):
        item = service.create_store_item(CLASSROOM, "Front seat", cost=10, inventory=1)
        service.award(STUDENT, CLASSROOM, 50, "homework", "HW")
        service.purchase_item(STUDENT, item.id)

        with pytest.raises(ValidationError):
            service.purchase_item(STUDENT, item.id)
        assert service.get_balance(STUDENT, CLASSROOM).current_balance == 40

    def test_unknown_item(self, service: TokenLedgerService):
        with pytest.raises(NotFoundError):
            service.purchase_item(STUDENT, uuid.uuid4())

    def test_purchase_spends_tokens_of_the_item_classroom_only(self, service: TokenLedgerService):
        item = service.create_store_item("classroom-b", "Sticker", cost=5)
        service.award(STUDENT, CLASSROOM, 50, "homework", "HW")

        with pytest.raises(InsufficientBalance):
            service.purchase_item(STUDENT, item.id)

    def test_deactivated_item_cannot_be_bought(self, service: TokenLedgerService):
        item = service.create_store_item(CLASSROOM, "Lunch with teacher", cost=10)
        service.award(STUDENT, CLASSROOM, 50, "homework", "HW")

        deactivated = service.deactivate_store_item(item.id)

        assert deactivated.is_active is False
        assert service.list_store_items(CLASSROOM) == []
        with pytest.raises(ValidationError):
            service.purchase_item(STUDENT, item.id)
        assert service.get_balance(STUDENT, CLASSROOM).current_balance == 50

    def test_per_student_limit(self, service: TokenLedgerService):
        item = service.create_store_item(CLASSROOM, "Homework pass", cost=10, max_per_student=2)
        service.award(STUDENT, CLASSROOM, 50, "homework", "HW")
        service.award("student-2", CLASSROOM, 50, "homework", "HW")

        service.purchase_item(STUDENT, item.id)
        service.purchase_item(STUDENT, item.id)
        with pytest.raises(ValidationError):
            service.purchase_item(STUDENT, item.id)

        assert service.get_balance(STUDENT, CLASSROOM).current_balance == 30
        assert service.purchase_item("student-2", item.id).tokens_spent == 10

    @pytest.mark.parametrize("cost,inventory", [(0, -1), (10, -2)])
    def test_invalid_store_item(self, service: TokenLedgerService, cost, inventory):
        with pytest.raises(ValidationError):
            service.create_store_item(CLASSROOM, "Broken", cost=cost, inventory=inventory)


class TestStoreItemUpdates:
    def test_update_changes_only_given_fields(self, service: TokenLedgerService):
        item = service.create_store_item(CLASSROOM, "Sticker", cost=5, inventory=3, description="Shiny")

        updated = service.update_store_item(item.id, cost=8, max_per_student=1)

        assert updated.cost == 8
        assert updated.max_per_student == 1
        assert updated.inventory == 3
        assert updated.description == "Shiny"

    def test_reactivated_item_can_be_bought_again(self, service: TokenLedgerService):
        item = service.create_store_item(CLASSROOM, "Sticker", cost=5)
        service.award(STUDENT, CLASSROOM, 20, "homework", "HW")
        service.deactivate_store_item(item.id)

        service.update_store_item(item.id, is_active=True)

        assert service.purchase_item(STUDENT, item.id).tokens_spent == 5

    @pytest.mark.parametrize(
        "changes",
        [{"cost": 0}, {"inventory": -5}, {"max_per_student": 0}, {"name": " "}, {"classroom_id": "classroom-b"}],
    )
    def test_invalid_update_is_rejected(self, service: TokenLedgerService, changes):
        item = service.create_store_item(CLASSROOM, "Sticker", cost=5)

        with pytest.raises(ValidationError):
            service.update_store_item(item.id, **changes)

        assert service.list_store_items(CLASSROOM)[0].cost == 5

    def test_unknown_item(self, service: TokenLedgerService):
        with pytest.raises(NotFoundError):
            service.deactivate_store_item(uuid.uuid4())


class TestCatalog:
    def test_default_categories_seeded_once(self, service: TokenLedgerService):
        first = service.get_categories(CLASSROOM)
        second = service.get_categories(CLASSROOM)

        assert len(first) == len(DEFAULT_CATEGORIES)
        assert [c.id for c in first] == [c.id for c in second]
        assert {c.name for c in first} >= {"Participation", "Extra Credit"}

    def test_presets_seeded_per_teacher(self, service: TokenLedgerService):
        presets = service.get_presets(TEACHER, CLASSROOM)
        assert len(presets) == len(DEFAULT_PRESETS)
        assert len(service.get_presets("teacher-2", CLASSROOM)) == len(DEFAULT_PRESETS)
        assert len(service.get_presets(TEACHER, CLASSROOM)) == len(DEFAULT_PRESETS)

    def test_award_with_preset_uses_preset_amount_and_counts_usage(self, service: TokenLedgerService):
        preset = next(p for p in service.get_presets(TEACHER, CLASSROOM) if p.preset_name == "Quick Bonus")

        results = service.award_with_preset(preset.id, ["s1", "s2"], TEACHER)

        assert all(r.success for r in results)
        assert results[0].transaction.amount == 5
        assert results[0].transaction.category == PRESET_CATEGORY
        assert results[0].transaction.description == "Small bonus for good behavior!"
        assert results[0].transaction.reference_type == "teacher_preset"
        assert service.get_balance("s2", CLASSROOM).current_balance == 5

        refreshed = next(p for p in service.get_presets(TEACHER, CLASSROOM) if p.id == preset.id)
        assert refreshed.usage_count == 1
        assert refreshed.last_used_at is not None

    def test_preset_of_another_teacher_is_not_found(self, service: TokenLedgerService):
        preset = service.get_presets(TEACHER, CLASSROOM)[0]
        with pytest.raises(NotFoundError):
            service.award_with_preset(preset.id, ["s1"], "teacher-2")
