"""Tests for the UCP lifecycle service."""

from datetime import date

import pytest

from app.middleware.exceptions import ConflictError, DomainValidationError, ResourceNotFoundError
from app.models.warehouse import Ucp
from app.services import ucp_lifecycle
from app.utils.numbering import generate_ucp_code

USER = "user-1"


async def actions(db, ucp_id: int) -> list[str]:
    return [h.action for h in await ucp_lifecycle.get_ucp_history(db, ucp_id)]


@pytest.mark.unit
@pytest.mark.asyncio
class TestCreateAndAdd:
    """create_ucp and add_item."""

    async def test_create_binds_pallet_and_position(self, db_session, pallet, position):
        ucp = await ucp_lifecycle.create_ucp(
            db_session, pallet_id=pallet.id, position_id=position.id, user_id=USER
        )

        await db_session.refresh(pallet)
        await db_session.refresh(position)
        assert ucp.status == "active"
        assert ucp.code.startswith(f"UCP-{date.today():%Y%m%d}-")
        assert pallet.status == "em_uso"
        assert position.status == "ocupada"
        assert await actions(db_session, ucp.id) == ["created"]

    async def test_pallet_in_use_is_rejected(self, db_session, pallet):
        await ucp_lifecycle.create_ucp(db_session, pallet_id=pallet.id, user_id=USER)

        with pytest.raises(ConflictError) as exc:
            await ucp_lifecycle.create_ucp(db_session, pallet_id=pallet.id, user_id=USER)
        assert exc.value.error_code == "PALLET_UNAVAILABLE"
        assert exc.value.status_code == 409

    async def test_occupied_position_rolls_back_pallet_binding(self, seed, db_session):
        first_pallet, second_pallet = await seed.pallet(), await seed.pallet()
        position = await seed.position()
        await ucp_lifecycle.create_ucp(
            db_session, pallet_id=first_pallet.id, position_id=position.id, user_id=USER
        )

        with pytest.raises(ConflictError) as exc:
            await ucp_lifecycle.create_ucp(
                db_session, pallet_id=second_pallet.id, position_id=position.id, user_id=USER
            )

        assert exc.value.error_code == "POSITION_OCCUPIED"
        await db_session.refresh(second_pallet)
        assert second_pallet.status == "disponivel"

    async def test_unknown_pallet_is_404(self, db_session):
        with pytest.raises(ResourceNotFoundError) as exc:
            await ucp_lifecycle.create_ucp(db_session, pallet_id=999, user_id=USER)
        assert exc.value.error_code == "PALLET_NOT_FOUND"

    async def test_add_item_keeps_status(self, db_session, pallet, product):
        ucp = await ucp_lifecycle.create_ucp(db_session, pallet_id=pallet.id, user_id=USER)

        item = await ucp_lifecycle.add_item(
            db_session, ucp.id, product_id=product.id, quantity=12, user_id=USER
        )

        assert item.is_active is True
        assert ucp.status == "active"
        assert await actions(db_session, ucp.id) == ["created", "item_added"]

    async def test_add_item_unknown_product(self, db_session, pallet):
        ucp = await ucp_lifecycle.create_ucp(db_session, pallet_id=pallet.id, user_id=USER)

        with pytest.raises(ResourceNotFoundError) as exc:
            await ucp_lifecycle.add_item(db_session, ucp.id, product_id=404, quantity=1, user_id=USER)
        assert exc.value.error_code == "PRODUCT_NOT_FOUND"


@pytest.mark.unit
@pytest.mark.asyncio
class TestRemoveItem:
    """remove_item, full and partial."""

    async def test_removing_last_item_empties_ucp(self, db_session, pallet, product):
        ucp = await ucp_lifecycle.create_ucp(db_session, pallet_id=pallet.id, user_id=USER)
        item = await ucp_lifecycle.add_item(
            db_session, ucp.id, product_id=product.id, quantity=5, user_id=USER
        )

        removed, owner = await ucp_lifecycle.remove_item(
            db_session, item.id, reason="Avaria", user_id=USER
        )

        assert removed.is_active is False
        assert removed.removal_reason == "Avaria"
        assert removed.removed_by == USER
        assert owner.status == "empty"
        assert await actions(db_session, ucp.id) == [
            "created", "item_added", "item_removed", "status_changed",
        ]

    async def test_partial_removal_keeps_line_active(self, db_session, pallet, product):
        ucp = await ucp_lifecycle.create_ucp(db_session, pallet_id=pallet.id, user_id=USER)
        item = await ucp_lifecycle.add_item(
            db_session, ucp.id, product_id=product.id, quantity=5, user_id=USER
        )

        removed, owner = await ucp_lifecycle.remove_item(
            db_session, item.id, reason="Amostra", quantity=2, user_id=USER
        )

        assert removed.is_active is True
        assert removed.quantity == 3
        assert owner.status == "active"

    async def test_removing_twice_conflicts(self, db_session, pallet, product):
        ucp = await ucp_lifecycle.create_ucp(db_session, pallet_id=pallet.id, user_id=USER)
        item = await ucp_lifecycle.add_item(
            db_session, ucp.id, product_id=product.id, quantity=5, user_id=USER
        )
        await ucp_lifecycle.remove_item(db_session, item.id, reason="Avaria", user_id=USER)

        with pytest.raises(ConflictError) as exc:
            await ucp_lifecycle.remove_item(db_session, item.id, reason="Avaria", user_id=USER)
        assert exc.value.error_code == "ITEM_ALREADY_REMOVED"

    async def test_removing_more_than_available(self, db_session, pallet, product):
        ucp = await ucp_lifecycle.create_ucp(db_session, pallet_id=pallet.id, user_id=USER)
        item = await ucp_lifecycle.add_item(
            db_session, ucp.id, product_id=product.id, quantity=5, user_id=USER
        )

        with pytest.raises(DomainValidationError) as exc:
            await ucp_lifecycle.remove_item(
                db_session, item.id, reason="Avaria", quantity=6, user_id=USER
            )
        assert exc.value.error_code == "QUANTITY_EXCEEDS_AVAILABLE"


@pytest.mark.unit
@pytest.mark.asyncio
class TestMove:
    """move_ucp."""

    async def test_move_frees_old_and_occupies_new(self, seed, db_session, pallet):
        old, new = await seed.position(), await seed.position()
        ucp = await ucp_lifecycle.create_ucp(
            db_session, pallet_id=pallet.id, position_id=old.id, user_id=USER
        )

        await ucp_lifecycle.move_ucp(db_session, ucp.id, position_id=new.id, user_id=USER)

        for obj in (old, new, ucp):
            await db_session.refresh(obj)
        assert old.status == "disponivel"
        assert new.status == "ocupada"
        assert ucp.position_id == new.id
        history = await ucp_lifecycle.get_ucp_history(db_session, ucp.id)
        assert history[-1].action == "moved"
        assert (history[-1].from_position_id, history[-1].to_position_id) == (old.id, new.id)

    async def test_move_to_occupied_position_changes_nothing(self, seed, db_session):
        first_pallet, second_pallet = await seed.pallet(), await seed.pallet()
        a, b = await seed.position(), await seed.position()
        mover = await ucp_lifecycle.create_ucp(
            db_session, pallet_id=first_pallet.id, position_id=a.id, user_id=USER
        )
        await ucp_lifecycle.create_ucp(
            db_session, pallet_id=second_pallet.id, position_id=b.id, user_id=USER
        )

        with pytest.raises(ConflictError) as exc:
            await ucp_lifecycle.move_ucp(db_session, mover.id, position_id=b.id, user_id=USER)

        assert exc.value.error_code == "POSITION_OCCUPIED"
        for obj in (a, b, mover):
            await db_session.refresh(obj)
        assert a.status == "ocupada"
        assert b.status == "ocupada"
        assert mover.position_id == a.id
        assert "moved" not in await actions(db_session, mover.id)

    async def test_move_to_same_position(self, db_session, pallet, position):
        ucp = await ucp_lifecycle.create_ucp(
            db_session, pallet_id=pallet.id, position_id=position.id, user_id=USER
        )

        with pytest.raises(DomainValidationError) as exc:
            await ucp_lifecycle.move_ucp(db_session, ucp.id, position_id=position.id, user_id=USER)
        assert exc.value.error_code == "SAME_POSITION"


@pytest.mark.unit
@pytest.mark.asyncio
class TestDismantleAndReactivate:
    """dismantle_ucp and reactivate_pallet."""

    async def test_dismantle_archives_and_frees_everything(self, db_session, pallet, position, product):
        ucp = await ucp_lifecycle.create_ucp(
            db_session, pallet_id=pallet.id, position_id=position.id, user_id=USER
        )
        item = await ucp_lifecycle.add_item(
            db_session, ucp.id, product_id=product.id, quantity=3, user_id=USER
        )

        await ucp_lifecycle.dismantle_ucp(db_session, ucp.id, user_id=USER)

        for obj in (ucp, item, pallet, position):
            await db_session.refresh(obj)
        assert ucp.status == "archived"
        assert ucp.position_id is None
        assert item.is_active is False
        assert item.removal_reason == "UCP desmontada"
        assert pallet.status == "disponivel"
        assert position.status == "disponivel"
        assert (await actions(db_session, ucp.id))[-1] == "dismantled"

    async def test_dismantle_twice_conflicts(self, db_session, pallet):
        ucp = await ucp_lifecycle.create_ucp(db_session, pallet_id=pallet.id, user_id=USER)
        await ucp_lifecycle.dismantle_ucp(db_session, ucp.id, user_id=USER, reason="Fim de ciclo")

        with pytest.raises(ConflictError) as exc:
            await ucp_lifecycle.dismantle_ucp(db_session, ucp.id, user_id=USER)
        assert exc.value.error_code == "UCP_ALREADY_ARCHIVED"
        assert exc.value.status_code == 409

    async def test_archived_ucp_rejects_items(self, db_session, pallet, product):
        ucp = await ucp_lifecycle.create_ucp(db_session, pallet_id=pallet.id, user_id=USER)
        await ucp_lifecycle.dismantle_ucp(db_session, ucp.id, user_id=USER)

        with pytest.raises(ConflictError) as exc:
            await ucp_lifecycle.add_item(
                db_session, ucp.id, product_id=product.id, quantity=1, user_id=USER
            )
        assert exc.value.error_code == "UCP_ARCHIVED"

    async def test_reactivate_issues_new_code(self, db_session, pallet):
        first = await ucp_lifecycle.create_ucp(db_session, pallet_id=pallet.id, user_id=USER)
        await ucp_lifecycle.dismantle_ucp(db_session, first.id, user_id=USER)

        second = await ucp_lifecycle.reactivate_pallet(db_session, pallet.id, user_id=USER)

        await db_session.refresh(pallet)
        assert second.id != first.id
        assert second.code != first.code
        assert second.status == "active"
        assert pallet.status == "em_uso"

    async def test_reactivate_pallet_in_use(self, db_session, pallet):
        await ucp_lifecycle.create_ucp(db_session, pallet_id=pallet.id, user_id=USER)

        with pytest.raises(ConflictError) as exc:
            await ucp_lifecycle.reactivate_pallet(db_session, pallet.id, user_id=USER)
        assert exc.value.error_code == "PALLET_UNAVAILABLE"


@pytest.mark.unit
@pytest.mark.asyncio
class TestTransfer:
    """transfer_item."""

    async def test_partial_transfer(self, seed, db_session, product):
        source = await ucp_lifecycle.create_ucp(db_session, pallet_id=(await seed.pallet()).id, user_id=USER)
        target = await ucp_lifecycle.create_ucp(db_session, pallet_id=(await seed.pallet()).id, user_id=USER)
        item = await ucp_lifecycle.add_item(
            db_session, source.id, product_id=product.id, quantity=10, lot="L1", user_id=USER
        )

        transfer = await ucp_lifecycle.transfer_item(
            db_session, source_item_id=item.id, target_ucp_id=target.id, quantity=4, user_id=USER
        )

        assert transfer.transfer_type == "partial"
        assert item.quantity == 6
        assert await ucp_lifecycle.active_quantity(db_session, target.id, product.id) == 4
        assert (await actions(db_session, source.id))[-1] == "item_transferred"
        assert (await actions(db_session, target.id))[-1] == "item_added"

    async def test_complete_transfer_empties_source(self, seed, db_session, product):
        source = await ucp_lifecycle.create_ucp(db_session, pallet_id=(await seed.pallet()).id, user_id=USER)
        target = await ucp_lifecycle.create_ucp(db_session, pallet_id=(await seed.pallet()).id, user_id=USER)
        item = await ucp_lifecycle.add_item(
            db_session, source.id, product_id=product.id, quantity=10, user_id=USER
        )

        transfer = await ucp_lifecycle.transfer_item(
            db_session, source_item_id=item.id, target_ucp_id=target.id, quantity=10, user_id=USER
        )

        assert transfer.transfer_type == "complete"
        assert item.is_active is False
        assert source.status == "empty"

    async def test_transfer_to_same_ucp(self, db_session, pallet, product):
        ucp = await ucp_lifecycle.create_ucp(db_session, pallet_id=pallet.id, user_id=USER)
        item = await ucp_lifecycle.add_item(
            db_session, ucp.id, product_id=product.id, quantity=10, user_id=USER
        )

        with pytest.raises(DomainValidationError) as exc:
            await ucp_lifecycle.transfer_item(
                db_session, source_item_id=item.id, target_ucp_id=ucp.id, quantity=1, user_id=USER
            )
        assert exc.value.error_code == "SAME_UCP"


@pytest.mark.unit
@pytest.mark.asyncio
class TestReadSide:
    """Code generation and listing."""

    async def test_codes_increment_per_day(self, db_session):
        today = date(2026, 2, 19)
        assert await generate_ucp_code(db_session, today) == "UCP-20260219-0001"

        db_session.add(Ucp(code="UCP-20260219-0007", status="active", created_by=USER))
        await db_session.commit()

        assert await generate_ucp_code(db_session, today) == "UCP-20260219-0008"
        assert await generate_ucp_code(db_session, date(2026, 2, 20)) == "UCP-20260220-0001"

    async def test_sequence_past_padding_width(self, db_session):
        db_session.add_all([
            Ucp(code="UCP-20260219-9999", status="active", created_by=USER),
            Ucp(code="UCP-20260219-10000", status="active", created_by=USER),
        ])
        await db_session.commit()

        assert await generate_ucp_code(db_session, date(2026, 2, 19)) == "UCP-20260219-10001"

    async def test_list_excludes_archived_by_default(self, seed, db_session):
        kept = await ucp_lifecycle.create_ucp(db_session, pallet_id=(await seed.pallet()).id, user_id=USER)
        gone = await ucp_lifecycle.create_ucp(db_session, pallet_id=(await seed.pallet()).id, user_id=USER)
        await ucp_lifecycle.dismantle_ucp(db_session, gone.id, user_id=USER)

        ucps, total = await ucp_lifecycle.list_ucps(db_session)
        all_ucps, all_total = await ucp_lifecycle.list_ucps(db_session, include_archived=True)

        assert [u.id for u in ucps] == [kept.id]
        assert total == 1
        assert all_total == 2
